"""Shared test fixtures."""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from picfactory.config import SchedulerSettings
from picfactory.files import FileService
from picfactory.jobs.executor.base import TaskExecutor, TaskRunRequest, TaskRunResult
from picfactory.jobs.models import RuntimeControl
from picfactory.jobs.scheduler import JobScheduler, SchedulerClock

_PNG_BYTES = b"\x89PNG\r\n\x1a\nfake"


class FakeClock(SchedulerClock):
    """Simulated time: sleeps and countdown ticks advance instantly.

    ``cues`` maps a countdown tick number (1-based) to a callback run on the job
    thread right after that tick; ``on_sleep`` runs after every backoff sleep.
    """

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
        self._lock = threading.Lock()
        self.sleeps: list[float] = []
        self.ticks = 0
        self.cues: dict[int, Callable[[], None]] = {}
        self.on_sleep: Callable[[], None] | None = None

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def advance(self, seconds: float) -> None:
        with self._lock:
            self._now += timedelta(seconds=seconds)

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)
        if self.on_sleep is not None:
            self.on_sleep()

    def wait(self, control: RuntimeControl, seconds: float) -> bool:  # noqa: ARG002
        self.advance(seconds)
        self.ticks += 1
        cue = self.cues.get(self.ticks)
        if cue is not None:
            cue()
        return False


class ScriptedExecutor:
    """Returns queued outcomes in order, then succeeds with a fresh output file.

    An outcome that is an exception instance is raised instead of returned.
    """

    def __init__(
        self,
        outcomes: list[TaskRunResult | BaseException] | None = None,
        *,
        always: TaskRunResult | None = None,
    ) -> None:
        self.outcomes = list(outcomes or [])
        self.always = always
        self.calls: list[TaskRunRequest] = []

    def run(self, request: TaskRunRequest) -> TaskRunResult:
        self.calls.append(request)
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        if self.always is not None:
            return self.always
        output_path = request.output_dir / f"{request.task.id}.png"
        output_path.write_bytes(_PNG_BYTES)
        return TaskRunResult.success([output_path])


class BlockingExecutor(ScriptedExecutor):
    """Holds every attempt until ``release`` is set; ``started`` fires on entry."""

    def __init__(self, outcomes: list[TaskRunResult | BaseException] | None = None) -> None:
        super().__init__(outcomes)
        self.started = threading.Event()
        self.release = threading.Event()

    def run(self, request: TaskRunRequest) -> TaskRunResult:
        self.started.set()
        assert self.release.wait(timeout=5), "executor was never released"
        return super().run(request)


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def scheduler_factory(fake_clock: FakeClock) -> Callable[..., JobScheduler]:
    def _build(executor: TaskExecutor, **overrides) -> JobScheduler:
        settings = SchedulerSettings(
            **{
                "pause_poll_seconds": 0.01,
                "idle_poll_seconds": 0.01,
                **overrides,
            },
        )
        return JobScheduler(
            executor=executor,
            file_service=FileService(),
            settings=settings,
            clock=fake_clock,
        )

    return _build


@pytest.fixture()
def make_image(tmp_path: Path) -> Callable[[str], Path]:
    def _make(name: str) -> Path:
        path = tmp_path / "refs" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(_PNG_BYTES)
        return path

    return _make


@pytest.fixture()
def output_dir(tmp_path: Path) -> Path:
    return tmp_path / "out"
