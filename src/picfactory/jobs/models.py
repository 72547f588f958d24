"""Domain models for generation jobs, tasks, and push events."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any


class TaskStatus(str, Enum):
    """Task lifecycle states."""

    QUEUED = "queued"
    RUNNING = "running"
    WAITING_RATE_LIMIT = "waiting_rate_limit"
    PAUSED = "paused"
    DONE = "done"
    ERROR = "error"
    CANCELLED = "cancelled"


ACTIVE_STATUSES = frozenset({TaskStatus.RUNNING, TaskStatus.WAITING_RATE_LIMIT})
CANCELLABLE_STATUSES = frozenset(
    {
        TaskStatus.QUEUED,
        TaskStatus.PAUSED,
        TaskStatus.RUNNING,
        TaskStatus.WAITING_RATE_LIMIT,
    },
)


class AuthStage(str, Enum):
    """Login state of the remote web application."""

    UNKNOWN = "unknown"
    CHECKING = "checking"
    LOGGED_IN = "logged_in"
    LOGGED_OUT = "logged_out"
    BUSY = "busy"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class ReferenceImage:
    """One input image."""

    id: str
    file_path: Path
    file_name: str

    def to_payload(self) -> dict[str, Any]:
        return {"id": self.id, "filePath": str(self.file_path), "fileName": self.file_name}


@dataclass(frozen=True, slots=True)
class PromptItem:
    """One non-blank prompt text."""

    id: str
    text: str

    def to_payload(self) -> dict[str, Any]:
        return {"id": self.id, "text": self.text}


@dataclass(slots=True)
class GenerationTask:
    """One (reference, prompt) unit of work, mutated only by the scheduler."""

    id: str
    ref_image_id: str
    prompt_id: str
    status: TaskStatus = TaskStatus.QUEUED
    retry_count: int = 0
    output_paths: list[Path] = field(default_factory=list)
    error_message: str | None = None

    def snapshot(self) -> GenerationTask:
        """Detached copy safe to hand to observers."""

        return replace(self, output_paths=list(self.output_paths))

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "refImageId": self.ref_image_id,
            "promptId": self.prompt_id,
            "status": self.status.value,
            "retryCount": self.retry_count,
            "outputPaths": [str(path) for path in self.output_paths],
        }
        if self.error_message is not None:
            payload["errorMessage"] = self.error_message
        return payload


@dataclass(slots=True)
class JobBundle:
    """All tasks of one submitted batch plus its shared output directory."""

    id: str
    created_at: datetime
    output_dir: Path
    refs: list[ReferenceImage]
    prompts: list[PromptItem]
    tasks: list[GenerationTask]

    def find_ref(self, ref_id: str) -> ReferenceImage | None:
        return next((ref for ref in self.refs if ref.id == ref_id), None)

    def find_prompt(self, prompt_id: str) -> PromptItem | None:
        return next((prompt for prompt in self.prompts if prompt.id == prompt_id), None)

    def find_task(self, task_id: str) -> GenerationTask | None:
        return next((task for task in self.tasks if task.id == task_id), None)

    def count(self, *statuses: TaskStatus) -> int:
        return sum(1 for task in self.tasks if task.status in statuses)

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "createdAt": self.created_at.isoformat(),
            "outputDir": str(self.output_dir),
            "refs": [ref.to_payload() for ref in self.refs],
            "prompts": [prompt.to_payload() for prompt in self.prompts],
            "tasks": [task.to_payload() for task in self.tasks],
        }


class RuntimeControl:
    """Scheduling signals of one job plus the condition its loop waits on."""

    def __init__(self) -> None:
        self.running = False
        self.paused = False
        self.cancelled = False
        self.condition = threading.Condition(threading.RLock())

    def notify(self) -> None:
        with self.condition:
            self.condition.notify_all()

    def wait(self, timeout: float) -> bool:
        """Block up to ``timeout`` seconds; True when woken by a control signal."""

        with self.condition:
            return self.condition.wait(timeout=timeout)


@dataclass(frozen=True, slots=True)
class JobProgressEvent:
    job_id: str
    completed: int
    total: int
    status: TaskStatus
    current_task_id: str | None = None
    message: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "jobId": self.job_id,
            "completed": self.completed,
            "total": self.total,
            "status": self.status.value,
        }
        if self.current_task_id is not None:
            payload["currentTaskId"] = self.current_task_id
        if self.message is not None:
            payload["message"] = self.message
        return payload


@dataclass(frozen=True, slots=True)
class RateLimitEvent:
    job_id: str
    wait_seconds: int
    resume_at: datetime

    @property
    def resume_at_iso(self) -> str:
        return self.resume_at.isoformat()

    def to_payload(self) -> dict[str, Any]:
        return {
            "jobId": self.job_id,
            "waitSeconds": self.wait_seconds,
            "resumeAtIso": self.resume_at_iso,
        }


@dataclass(frozen=True, slots=True)
class JobDoneEvent:
    job_id: str
    final_status: TaskStatus

    def to_payload(self) -> dict[str, Any]:
        return {"jobId": self.job_id, "finalStatus": self.final_status.value}


@dataclass(frozen=True, slots=True)
class JobErrorEvent:
    job_id: str
    message: str

    def to_payload(self) -> dict[str, Any]:
        return {"jobId": self.job_id, "message": self.message}


@dataclass(frozen=True, slots=True)
class AuthState:
    """Last known login state of the remote web application."""

    stage: AuthStage
    checked_at: datetime
    message: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "stage": self.stage.value,
            "checkedAtIso": self.checked_at.isoformat(),
        }
        if self.message is not None:
            payload["message"] = self.message
        return payload
