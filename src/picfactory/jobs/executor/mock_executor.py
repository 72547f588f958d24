"""Degraded executors used without a live remote surface."""

from __future__ import annotations

import time

from picfactory.files import FileService, build_task_output_dir
from picfactory.jobs.executor.base import TaskRunRequest, TaskRunResult


class MockExecutor:
    """Always succeeds after a fixed latency and writes a placeholder output."""

    def __init__(self, file_service: FileService, *, latency_seconds: float = 0.8) -> None:
        self.file_service = file_service
        self.latency_seconds = latency_seconds

    def run(self, request: TaskRunRequest) -> TaskRunResult:
        if self.latency_seconds > 0:
            time.sleep(self.latency_seconds)
        task_dir = build_task_output_dir(
            request.output_dir,
            request.ref_image.file_name,
            request.prompt.text,
            request.task.id,
        )
        output_path = self.file_service.save_mock_output(request.ref_image.file_path, task_dir)
        return TaskRunResult.success([output_path])


class DisabledExecutor:
    """Stands in when neither the mock nor the live executor is enabled."""

    REASON = (
        "Live executor is disabled; set PICFACTORY_ENABLE_REAL_RUNNER=1 "
        "(or PICFACTORY_MOCK_RUNNER=1 for offline runs) and retry."
    )

    def run(self, request: TaskRunRequest) -> TaskRunResult:  # noqa: ARG002
        return TaskRunResult.failure(self.REASON, retryable=False)
