"""In-memory job registry."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from dataclasses import dataclass, field

from picfactory.jobs.errors import NotFoundError
from picfactory.jobs.models import GenerationTask, JobBundle, RuntimeControl


@dataclass(slots=True)
class RuntimeJob:
    """Job bundle with its private scheduling state."""

    bundle: JobBundle
    control: RuntimeControl = field(default_factory=RuntimeControl)
    thread: threading.Thread | None = None


class JobStore:
    """Job id to runtime job map; insert and lookup are mutex-guarded."""

    def __init__(self) -> None:
        self._jobs: dict[str, RuntimeJob] = {}
        self._lock = threading.Lock()

    def add(self, bundle: JobBundle) -> RuntimeJob:
        runtime = RuntimeJob(bundle=bundle)
        with self._lock:
            self._jobs[bundle.id] = runtime
        return runtime

    def get(self, job_id: str) -> RuntimeJob:
        with self._lock:
            runtime = self._jobs.get(job_id)
        if runtime is None:
            raise NotFoundError(f"Unknown job: {job_id}")
        return runtime

    def find_task(self, task_id: str) -> tuple[RuntimeJob, GenerationTask]:
        for runtime in self:
            task = runtime.bundle.find_task(task_id)
            if task is not None:
                return runtime, task
        raise NotFoundError(f"Unknown task: {task_id}")

    def __iter__(self) -> Iterator[RuntimeJob]:
        with self._lock:
            jobs = list(self._jobs.values())
        return iter(jobs)

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)
