"""Controllers for generation CLI commands."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

from picfactory.config import Settings
from picfactory.jobs.models import (
    AuthStage,
    JobDoneEvent,
    JobErrorEvent,
    RateLimitEvent,
    TaskStatus,
)
from picfactory.runtime import Runtime, build_runtime


@dataclass(slots=True)
class RunJobCommand:
    """CLI input for one batch run."""

    refs: tuple[Path, ...]
    prompts: tuple[str, ...]
    prompts_file: Path | None = None
    output_dir: Path | None = None
    mock: bool = False
    timeout_seconds: float | None = None


@dataclass(slots=True)
class AuthCommand:
    """CLI input for login-state commands."""

    headless: bool | None = None


@dataclass(slots=True)
class CommandResult:
    lines: list[str] = field(default_factory=list)
    success: bool = True


class GenerationCliController:
    """Runs jobs to completion in the foreground and reports login state."""

    def __init__(self, settings_factory: Callable[[], Settings] = Settings.from_env) -> None:
        self.settings_factory = settings_factory

    def run_job(self, command: RunJobCommand) -> CommandResult:
        settings = self.settings_factory()
        if command.mock:
            settings.runner.mock_runner = True
        prompts = [*command.prompts, *_read_prompts_file(command.prompts_file)]

        with _runtime(settings) as runtime:
            scheduler = runtime.scheduler
            finished = threading.Event()
            done_events: list[JobDoneEvent] = []
            rate_limits: list[RateLimitEvent] = []
            errors: list[JobErrorEvent] = []
            bundle = scheduler.create_job(
                list(command.refs),
                prompts,
                command.output_dir or settings.default_output_dir(),
            )

            def _on_done(event: JobDoneEvent) -> None:
                if event.job_id == bundle.id:
                    done_events.append(event)
                    finished.set()

            def _on_error(event: JobErrorEvent) -> None:
                if event.job_id == bundle.id:
                    errors.append(event)
                    finished.set()

            scheduler.on_done(_on_done)
            scheduler.on_error_event(_on_error)
            scheduler.on_rate_limit(rate_limits.append)
            scheduler.start(bundle.id)
            if not finished.wait(timeout=command.timeout_seconds):
                scheduler.cancel(bundle.id)
            scheduler.join(bundle.id, timeout=30)

        lines = [
            "Job created: "
            f"job_id={bundle.id} refs={len(bundle.refs)} prompts={len(bundle.prompts)} "
            f"tasks={len(bundle.tasks)}",
            f"Output dir: {bundle.output_dir}",
        ]
        lines.extend(
            f"Rate limited: waited {event.wait_seconds}s (resume at {event.resume_at_iso})"
            for event in rate_limits
        )
        for task in bundle.tasks:
            ref = bundle.find_ref(task.ref_image_id)
            line = (
                f"- {task.status.value:<10} ref={ref.file_name if ref else '?'} "
                f"retries={task.retry_count}"
            )
            if task.output_paths:
                line += " outputs=" + ", ".join(str(path) for path in task.output_paths)
            if task.error_message and task.status != TaskStatus.DONE:
                line += f" error={task.error_message}"
            lines.append(line)

        lines.extend(f"Job error: {event.message}" for event in errors)
        if done_events:
            final_status = done_events[-1].final_status
        else:
            final_status = TaskStatus.ERROR if errors else TaskStatus.CANCELLED
        lines.append(
            "Job finished: "
            f"status={final_status.value} done={bundle.count(TaskStatus.DONE)} "
            f"error={bundle.count(TaskStatus.ERROR)} "
            f"cancelled={bundle.count(TaskStatus.CANCELLED)}",
        )
        return CommandResult(lines=lines, success=final_status == TaskStatus.DONE)

    def check_auth(self, command: AuthCommand) -> CommandResult:
        """Open the site on the saved profile and report the login state."""

        settings = self.settings_factory()
        if command.headless is not None:
            settings.browser.headless = command.headless
        with _runtime(settings) as runtime:
            state = runtime.session.probe_unattended()
        lines = [f"Auth state: {state.stage.value}"]
        if state.message:
            lines.append(state.message)
        return CommandResult(lines=lines, success=state.stage == AuthStage.LOGGED_IN)

    def open_web(
        self,
        command: AuthCommand,  # noqa: ARG002
        emit: Callable[[list[str]], None],
    ) -> CommandResult:
        """Show the site in a visible browser and wait for the window to close."""

        settings = self.settings_factory()
        with _runtime(settings) as runtime:
            state = runtime.session.open_interactive_session()
            if state.stage in {AuthStage.ERROR, AuthStage.BUSY}:
                return CommandResult(
                    lines=[f"Auth state: {state.stage.value}", state.message or ""],
                    success=False,
                )
            emit(
                [
                    f"Auth state: {state.stage.value}",
                    "Log in if needed, then close the browser window to continue.",
                ],
            )
            runtime.session.wait_for_interactive_close()
            final_state = runtime.session.probe_unattended()
        return CommandResult(
            lines=[f"Auth state: {final_state.stage.value}"],
            success=final_state.stage == AuthStage.LOGGED_IN,
        )


@contextmanager
def _runtime(settings: Settings) -> Iterator[Runtime]:
    runtime = build_runtime(settings)
    try:
        yield runtime
    finally:
        runtime.close()


def _read_prompts_file(path: Path | None) -> list[str]:
    if path is None:
        return []
    return [line.strip() for line in path.read_text("utf-8").splitlines() if line.strip()]
