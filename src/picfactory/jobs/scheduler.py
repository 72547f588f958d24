"""Job scheduler: one cooperative execution loop per job over an in-memory store."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from uuid import uuid4

from picfactory.config import SchedulerSettings
from picfactory.files import FileService
from picfactory.jobs.errors import ValidationError
from picfactory.jobs.events import Observers, Unsubscribe
from picfactory.jobs.executor.base import TaskExecutor, TaskRunRequest, TaskRunResult
from picfactory.jobs.models import (
    ACTIVE_STATUSES,
    CANCELLABLE_STATUSES,
    GenerationTask,
    JobBundle,
    JobDoneEvent,
    JobErrorEvent,
    JobProgressEvent,
    PromptItem,
    RateLimitEvent,
    ReferenceImage,
    RuntimeControl,
    TaskStatus,
)
from picfactory.jobs.store import JobStore, RuntimeJob

logger = logging.getLogger(__name__)

MISSING_DEPENDENCY_MESSAGE = "Missing dependency: reference image or prompt not found."
FATAL_LOOP_MESSAGE = "Scheduler stopped unexpectedly; see logs for details."
DEFAULT_FAILURE_MESSAGE = "Task attempt failed."


class SchedulerClock:
    """Time source for timestamps, backoff delays, and countdown ticks."""

    def now(self) -> datetime:
        return datetime.now(tz=UTC)

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)

    def wait(self, control: RuntimeControl, seconds: float) -> bool:
        """Wait up to ``seconds``; True when a control signal cut the wait short."""

        return control.wait(seconds)


@dataclass(slots=True)
class ImageInput:
    """Reference image as submitted by the caller."""

    file_path: Path
    file_name: str | None = None


class JobScheduler:
    """Owns all jobs, runs their loops, and interprets executor results.

    Every task mutation happens under the owning job's control lock. Events
    are emitted from whichever thread made the change: the caller's thread for
    commands, the job's loop thread otherwise.
    """

    def __init__(
        self,
        *,
        executor: TaskExecutor,
        file_service: FileService,
        settings: SchedulerSettings | None = None,
        clock: SchedulerClock | None = None,
    ) -> None:
        self.executor = executor
        self.file_service = file_service
        self.settings = settings or SchedulerSettings()
        self.clock = clock or SchedulerClock()
        self.store = JobStore()
        self._progress: Observers[JobProgressEvent] = Observers("progress")
        self._task_updated: Observers[GenerationTask] = Observers("task-updated")
        self._rate_limit: Observers[RateLimitEvent] = Observers("rate-limit")
        self._done: Observers[JobDoneEvent] = Observers("done")
        self._error: Observers[JobErrorEvent] = Observers("error")

    # -- subscriptions --------------------------------------------------------

    def on_progress(self, callback: Callable[[JobProgressEvent], None]) -> Unsubscribe:
        return self._progress.subscribe(callback)

    def on_task_updated(self, callback: Callable[[GenerationTask], None]) -> Unsubscribe:
        return self._task_updated.subscribe(callback)

    def on_rate_limit(self, callback: Callable[[RateLimitEvent], None]) -> Unsubscribe:
        return self._rate_limit.subscribe(callback)

    def on_done(self, callback: Callable[[JobDoneEvent], None]) -> Unsubscribe:
        return self._done.subscribe(callback)

    def on_error_event(self, callback: Callable[[JobErrorEvent], None]) -> Unsubscribe:
        return self._error.subscribe(callback)

    # -- commands -------------------------------------------------------------

    def create_job(
        self,
        refs: Sequence[ImageInput | Path | str],
        prompts: Sequence[str],
        output_dir: Path,
    ) -> JobBundle:
        """Materialize refs x prompts into queued tasks and register the job."""

        references = _reference_images(refs)
        prompt_items = [
            PromptItem(id=_make_id("prompt"), text=text.strip())
            for text in prompts
            if text and text.strip()
        ]
        if not references:
            raise ValidationError("No reference images provided; import at least one image.")
        if not prompt_items:
            raise ValidationError("No prompts provided; enter at least one prompt.")

        output_dir = Path(output_dir)
        self.file_service.ensure_dir(output_dir)
        tasks = [
            GenerationTask(id=_make_id("task"), ref_image_id=ref.id, prompt_id=prompt.id)
            for ref in references
            for prompt in prompt_items
        ]
        bundle = JobBundle(
            id=_make_id("job"),
            created_at=self.clock.now(),
            output_dir=output_dir,
            refs=references,
            prompts=prompt_items,
            tasks=tasks,
        )
        runtime = self.store.add(bundle)
        logger.info(
            "Job %s created: refs=%d prompts=%d tasks=%d output_dir=%s",
            bundle.id,
            len(references),
            len(prompt_items),
            len(tasks),
            output_dir,
        )
        self._emit_progress(runtime, TaskStatus.QUEUED)
        return bundle

    def get_job(self, job_id: str) -> JobBundle:
        return self.store.get(job_id).bundle

    def start(self, job_id: str) -> None:
        """Launch the job loop unless it is already running."""

        runtime = self.store.get(job_id)
        control = runtime.control
        with control.condition:
            if control.running:
                return
            control.paused = False
            self._requeue_paused(runtime)
            control.cancelled = False
            control.running = True
            thread = threading.Thread(
                target=self._run,
                args=(runtime,),
                daemon=True,
                name=f"picfactory-{job_id}",
            )
            runtime.thread = thread
        logger.info("Job %s started", job_id)
        thread.start()

    def pause(self, job_id: str) -> None:
        runtime = self.store.get(job_id)
        control = runtime.control
        with control.condition:
            control.paused = True
            for task in runtime.bundle.tasks:
                if task.status == TaskStatus.QUEUED:
                    task.status = TaskStatus.PAUSED
                    self._notify_task(task)
            self._emit_progress(runtime, TaskStatus.PAUSED)
            control.condition.notify_all()
        logger.info("Job %s paused", job_id)

    def resume(self, job_id: str) -> None:
        runtime = self.store.get(job_id)
        control = runtime.control
        with control.condition:
            control.paused = False
            self._requeue_paused(runtime)
            control.condition.notify_all()
        logger.info("Job %s resumed", job_id)
        self.start(job_id)

    def cancel(self, job_id: str) -> None:
        """Cancel every non-terminal task now; an in-flight result is discarded later."""

        runtime = self.store.get(job_id)
        control = runtime.control
        with control.condition:
            control.cancelled = True
            for task in runtime.bundle.tasks:
                if task.status in CANCELLABLE_STATUSES:
                    task.status = TaskStatus.CANCELLED
                    self._notify_task(task)
            self._emit_progress(runtime, TaskStatus.CANCELLED)
            control.condition.notify_all()
            if not control.running:
                self._emit_done(runtime, TaskStatus.CANCELLED)
        logger.info("Job %s cancelled", job_id)

    def delete_output(self, task_id: str) -> None:
        runtime, task = self.store.find_task(task_id)
        with runtime.control.condition:
            self.file_service.delete_files(list(task.output_paths))
            task.output_paths = []
            self._notify_task(task)
        logger.info("Deleted outputs of task %s", task_id)

    def join(self, job_id: str, timeout: float | None = None) -> bool:
        """Wait for the job loop to exit; True when it is not running."""

        thread = self.store.get(job_id).thread
        if thread is None:
            return True
        thread.join(timeout=timeout)
        return not thread.is_alive()

    # -- execution loop -------------------------------------------------------

    def _run(self, runtime: RuntimeJob) -> None:
        job_id = runtime.bundle.id
        try:
            self._loop(runtime)
        except Exception:
            logger.exception("Job %s loop failed", job_id)
            with runtime.control.condition:
                self._error.emit(JobErrorEvent(job_id=job_id, message=FATAL_LOOP_MESSAGE))
                self._emit_progress(runtime, TaskStatus.ERROR, message=FATAL_LOOP_MESSAGE)
        finally:
            with runtime.control.condition:
                runtime.control.running = False

    def _loop(self, runtime: RuntimeJob) -> None:
        bundle = runtime.bundle
        control = runtime.control
        while True:
            idle_seconds: float | None = None
            task: GenerationTask | None = None
            with control.condition:
                if control.cancelled:
                    self._emit_done(runtime, TaskStatus.CANCELLED)
                    return
                if control.paused:
                    idle_seconds = self.settings.pause_poll_seconds
                else:
                    task = next(
                        (item for item in bundle.tasks if item.status == TaskStatus.QUEUED),
                        None,
                    )
                    if task is not None:
                        task.status = TaskStatus.RUNNING
                        self._notify_task(task)
                        self._emit_progress(runtime, TaskStatus.RUNNING, task.id)
                    elif bundle.count(*ACTIVE_STATUSES, TaskStatus.PAUSED):
                        idle_seconds = self.settings.idle_poll_seconds
                    else:
                        final_status = (
                            TaskStatus.ERROR if bundle.count(TaskStatus.ERROR) else TaskStatus.DONE
                        )
                        self._emit_done(runtime, final_status)
                        return

            if task is None:
                control.wait(idle_seconds or self.settings.idle_poll_seconds)
                continue

            ref_image = bundle.find_ref(task.ref_image_id)
            prompt = bundle.find_prompt(task.prompt_id)
            if ref_image is None or prompt is None:
                with control.condition:
                    if task.status == TaskStatus.RUNNING:
                        task.status = TaskStatus.ERROR
                        task.error_message = MISSING_DEPENDENCY_MESSAGE
                        self._notify_task(task)
                        self._emit_progress(
                            runtime,
                            TaskStatus.ERROR,
                            task.id,
                            MISSING_DEPENDENCY_MESSAGE,
                        )
                continue

            result = self.executor.run(
                TaskRunRequest(
                    job_id=bundle.id,
                    task=task.snapshot(),
                    ref_image=ref_image,
                    prompt=prompt,
                    output_dir=bundle.output_dir,
                ),
            )
            if control.cancelled:
                logger.info("Job %s cancelled; discarding result of task %s", bundle.id, task.id)
                continue
            self._apply_result(runtime, task, result)

    def _apply_result(
        self,
        runtime: RuntimeJob,
        task: GenerationTask,
        result: TaskRunResult,
    ) -> None:
        control = runtime.control
        job_id = runtime.bundle.id

        if result.ok:
            with control.condition:
                if task.status != TaskStatus.RUNNING:
                    return
                task.status = TaskStatus.DONE
                task.output_paths = list(result.output_paths)
                task.error_message = None
                self._notify_task(task)
                self._emit_progress(runtime, TaskStatus.RUNNING, task.id)
            return

        if result.rate_limit_seconds:
            wait_seconds = int(result.rate_limit_seconds)
            with control.condition:
                if task.status != TaskStatus.RUNNING:
                    return
                task.status = TaskStatus.WAITING_RATE_LIMIT
                task.error_message = result.reason
                self._notify_task(task)
                self._rate_limit.emit(
                    RateLimitEvent(
                        job_id=job_id,
                        wait_seconds=wait_seconds,
                        resume_at=self.clock.now() + timedelta(seconds=wait_seconds),
                    ),
                )
            logger.warning(
                "Job %s rate limited on task %s; cooling down for %ds",
                job_id,
                task.id,
                wait_seconds,
            )
            if not self._wait_for_rate_limit(runtime, wait_seconds):
                return
            with control.condition:
                if control.cancelled or task.status != TaskStatus.WAITING_RATE_LIMIT:
                    return
                task.status = TaskStatus.PAUSED if control.paused else TaskStatus.QUEUED
                self._notify_task(task)
            return

        with control.condition:
            if task.status != TaskStatus.RUNNING:
                return
            task.retry_count += 1
            task.error_message = result.reason or DEFAULT_FAILURE_MESSAGE
            if not (result.retryable and task.retry_count <= self.settings.max_retry):
                task.status = TaskStatus.ERROR
                self._notify_task(task)
                self._emit_progress(runtime, TaskStatus.ERROR, task.id, task.error_message)
                logger.warning(
                    "Job %s task %s failed after %d attempt(s): %s",
                    job_id,
                    task.id,
                    task.retry_count,
                    task.error_message,
                )
                return
            task.status = TaskStatus.PAUSED if control.paused else TaskStatus.QUEUED
            self._notify_task(task)
            delay_seconds = self.settings.retry_base_seconds * (2 ** (task.retry_count - 1))
        logger.info(
            "Job %s task %s retry %d/%d in %.1fs: %s",
            job_id,
            task.id,
            task.retry_count,
            self.settings.max_retry,
            delay_seconds,
            task.error_message,
        )
        self.clock.sleep(delay_seconds)

    def _wait_for_rate_limit(self, runtime: RuntimeJob, wait_seconds: int) -> bool:
        """Count down one-second ticks; pausing freezes the count. False if cancelled."""

        control = runtime.control
        remaining = wait_seconds
        every = max(1, self.settings.countdown_report_every)
        while remaining > 0:
            if control.cancelled:
                return False
            if control.paused:
                control.wait(self.settings.pause_poll_seconds)
                continue
            if self.clock.wait(control, 1.0):
                continue
            remaining -= 1
            if remaining % every == 0:
                with control.condition:
                    self._emit_progress(
                        runtime,
                        TaskStatus.WAITING_RATE_LIMIT,
                        message=f"Rate limit cooldown: {remaining} seconds left",
                    )
        return not control.cancelled

    # -- events ---------------------------------------------------------------

    def _requeue_paused(self, runtime: RuntimeJob) -> None:
        for task in runtime.bundle.tasks:
            if task.status == TaskStatus.PAUSED:
                task.status = TaskStatus.QUEUED
                self._notify_task(task)

    def _notify_task(self, task: GenerationTask) -> None:
        self._task_updated.emit(task.snapshot())

    def _emit_progress(
        self,
        runtime: RuntimeJob,
        status: TaskStatus,
        current_task_id: str | None = None,
        message: str | None = None,
    ) -> None:
        bundle = runtime.bundle
        self._progress.emit(
            JobProgressEvent(
                job_id=bundle.id,
                completed=bundle.count(TaskStatus.DONE),
                total=len(bundle.tasks),
                status=status,
                current_task_id=current_task_id,
                message=message,
            ),
        )

    def _emit_done(self, runtime: RuntimeJob, final_status: TaskStatus) -> None:
        self._emit_progress(runtime, final_status)
        self._done.emit(JobDoneEvent(job_id=runtime.bundle.id, final_status=final_status))
        logger.info("Job %s finished: %s", runtime.bundle.id, final_status.value)


def _reference_images(refs: Sequence[ImageInput | Path | str]) -> list[ReferenceImage]:
    images: list[ReferenceImage] = []
    seen: set[Path] = set()
    for ref in refs:
        item = ref if isinstance(ref, ImageInput) else ImageInput(file_path=Path(ref))
        file_path = Path(item.file_path)
        if file_path in seen:
            continue
        seen.add(file_path)
        images.append(
            ReferenceImage(
                id=_make_id("ref"),
                file_path=file_path,
                file_name=item.file_name or file_path.name or "image",
            ),
        )
    return images


def _make_id(prefix: str) -> str:
    return f"{prefix}_{uuid4()}"
