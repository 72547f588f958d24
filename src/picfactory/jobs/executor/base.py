"""Executor interface for one task attempt."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from picfactory.jobs.failure_classifier import FailureClass, TaskFailureClassification
from picfactory.jobs.models import GenerationTask, PromptItem, ReferenceImage


@dataclass(slots=True)
class TaskRunRequest:
    """Inputs required to execute one task attempt."""

    job_id: str
    task: GenerationTask
    ref_image: ReferenceImage
    prompt: PromptItem
    output_dir: Path


@dataclass(slots=True)
class TaskRunResult:
    """Typed outcome of one attempt; the scheduler's only view of what happened."""

    ok: bool
    output_paths: list[Path] = field(default_factory=list)
    reason: str | None = None
    retryable: bool = False
    rate_limit_seconds: int | None = None

    @classmethod
    def success(cls, output_paths: list[Path]) -> TaskRunResult:
        if not output_paths:
            raise ValueError("A successful attempt must report at least one output path.")
        return cls(ok=True, output_paths=list(output_paths))

    @classmethod
    def rate_limited(cls, reason: str, wait_seconds: int) -> TaskRunResult:
        return cls(ok=False, reason=reason, retryable=True, rate_limit_seconds=wait_seconds)

    @classmethod
    def failure(cls, reason: str, *, retryable: bool) -> TaskRunResult:
        return cls(ok=False, reason=reason, retryable=retryable)

    @classmethod
    def from_classification(
        cls,
        reason: str,
        classification: TaskFailureClassification,
    ) -> TaskRunResult:
        if (
            classification.failure_class == FailureClass.RATE_LIMITED
            and classification.rate_limit_seconds
        ):
            return cls.rate_limited(reason, classification.rate_limit_seconds)
        return cls.failure(reason, retryable=classification.retryable)


class TaskExecutor(Protocol):
    """Protocol implemented by task executors."""

    def run(self, request: TaskRunRequest) -> TaskRunResult:
        """Run one attempt and classify its outcome; expected failures never raise."""
