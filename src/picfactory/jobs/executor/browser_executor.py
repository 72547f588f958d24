"""Live executor: drives the remote web app through the session manager."""

from __future__ import annotations

import logging
from pathlib import Path

from playwright.sync_api import BrowserContext
from playwright.sync_api import Error as PlaywrightError

from picfactory.browser import pages
from picfactory.browser.session import RemoteSessionManager
from picfactory.config import BrowserSettings
from picfactory.files import FileService, build_task_output_dir
from picfactory.jobs.errors import NonRetryableError, RateLimitedError, TaskAttemptError
from picfactory.jobs.executor.base import TaskRunRequest, TaskRunResult
from picfactory.jobs.failure_classifier import (
    FailureClass,
    classify_failure_message,
    sanitize_error_message,
)

logger = logging.getLogger(__name__)

NO_OUTPUT_MESSAGE = "Generation finished but no output image was captured."


class BrowserExecutor:
    """Upload, submit, wait, and save outputs for one task on the remote site."""

    def __init__(
        self,
        session: RemoteSessionManager,
        file_service: FileService,
        settings: BrowserSettings,
    ) -> None:
        self.session = session
        self.file_service = file_service
        self.settings = settings

    def run(self, request: TaskRunRequest) -> TaskRunResult:
        task_dir = build_task_output_dir(
            request.output_dir,
            request.ref_image.file_name,
            request.prompt.text,
            request.task.id,
        )
        try:
            self.file_service.prepare_task_dir(task_dir)
            output_paths = self.session.run_task(
                lambda context: self._attempt(context, request, task_dir),
            )
        except RateLimitedError as error:
            logger.warning("Task %s rate limited: %s", request.task.id, error)
            return TaskRunResult.rate_limited(str(error), error.wait_seconds)
        except NonRetryableError as error:
            reason = sanitize_error_message(error)
            classification = classify_failure_message(reason, retryable_hint=False)
            if classification.failure_class == FailureClass.ACCESS_OR_AUTH:
                self.session.mark_logged_out(reason)
            return TaskRunResult.from_classification(reason, classification)
        except (TaskAttemptError, PlaywrightError, OSError) as error:
            reason = sanitize_error_message(error) or type(error).__name__
            classification = classify_failure_message(reason)
            logger.info(
                "Task %s attempt failed (%s): %s",
                request.task.id,
                classification.matched_rule,
                reason,
            )
            if classification.matched_rule == "auth_suspected":
                self.session.mark_logged_out(reason)
            return TaskRunResult.from_classification(reason, classification)

        if not output_paths:
            return TaskRunResult.failure(NO_OUTPUT_MESSAGE, retryable=True)
        self.session.mark_logged_in()
        return TaskRunResult.success(output_paths)

    def _attempt(
        self,
        context: BrowserContext,
        request: TaskRunRequest,
        task_dir: Path,
    ) -> list[Path]:
        page = pages.open_site_page(context, self.settings)
        pages.ensure_logged_in(page, self.settings)
        pages.start_new_conversation(page)
        pages.upload_reference_image(page, request.ref_image.file_path)
        baseline = set(pages.collect_image_sources(page))
        pages.submit_prompt(page, request.prompt.text)
        return pages.collect_generated_outputs(page, task_dir, baseline, self.settings)
