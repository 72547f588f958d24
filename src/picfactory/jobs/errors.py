"""Error taxonomy for job commands and task attempts."""

from __future__ import annotations


class ValidationError(ValueError):
    """Job input rejected before any state was created."""


class NotFoundError(LookupError):
    """Unknown job or task id."""


class TaskAttemptError(RuntimeError):
    """Expected failure of one task attempt; never escapes the executor."""


class RateLimitedError(TaskAttemptError):
    """Remote surface asked us to slow down."""

    def __init__(self, message: str, *, wait_seconds: int) -> None:
        super().__init__(message)
        self.wait_seconds = wait_seconds


class NonRetryableError(TaskAttemptError):
    """Operator action is required before the task can succeed."""


class RetryableError(TaskAttemptError):
    """Transient technical failure."""
