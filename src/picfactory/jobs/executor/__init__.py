"""Task executor implementations."""

from picfactory.jobs.executor.base import TaskExecutor, TaskRunRequest, TaskRunResult
from picfactory.jobs.executor.browser_executor import BrowserExecutor
from picfactory.jobs.executor.mock_executor import DisabledExecutor, MockExecutor

__all__ = [
    "BrowserExecutor",
    "DisabledExecutor",
    "MockExecutor",
    "TaskExecutor",
    "TaskRunRequest",
    "TaskRunResult",
]
