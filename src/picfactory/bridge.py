"""Named command channels and push-event forwarding for a UI layer.

A UI process calls ``CommandBridge.handle(channel, payload)`` for request and
response commands; push events are delivered through the ``send`` callback as
``(channel, payload)`` pairs with camelCase payloads. A UI layer obtains one
from ``Runtime.attach_bridge``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

from picfactory.browser.session import RemoteSessionManager
from picfactory.config import Settings
from picfactory.jobs.errors import ValidationError
from picfactory.jobs.events import Unsubscribe
from picfactory.jobs.scheduler import ImageInput, JobScheduler

logger = logging.getLogger(__name__)

Send = Callable[[str, dict[str, Any]], None]


class CommandChannels:
    JOB_CREATE = "job:create"
    JOB_START = "job:start"
    JOB_PAUSE = "job:pause"
    JOB_RESUME = "job:resume"
    JOB_CANCEL = "job:cancel"
    JOB_DELETE_OUTPUT = "job:delete-output"
    AUTH_GET_STATE = "auth:get-state"
    AUTH_CHECK = "auth:check"
    AUTH_OPEN_WEB = "auth:open-web"


class EventChannels:
    JOB_PROGRESS = "job:progress"
    JOB_TASK_UPDATED = "job:task-updated"
    JOB_RATE_LIMIT = "job:rate-limit"
    JOB_DONE = "job:done"
    JOB_ERROR = "job:error"
    AUTH_STATE = "auth:state"


class CommandBridge:
    """Dispatches command channels to the scheduler and session manager."""

    def __init__(
        self,
        scheduler: JobScheduler,
        session: RemoteSessionManager,
        settings: Settings,
        send: Send,
    ) -> None:
        self.scheduler = scheduler
        self.session = session
        self.settings = settings
        self._send = send
        self._handlers: dict[str, Callable[[Any], dict[str, Any] | None]] = {
            CommandChannels.JOB_CREATE: self._create_job,
            CommandChannels.JOB_START: lambda payload: scheduler.start(_field(payload, "jobId")),
            CommandChannels.JOB_PAUSE: lambda payload: scheduler.pause(_field(payload, "jobId")),
            CommandChannels.JOB_RESUME: lambda payload: scheduler.resume(_field(payload, "jobId")),
            CommandChannels.JOB_CANCEL: lambda payload: scheduler.cancel(_field(payload, "jobId")),
            CommandChannels.JOB_DELETE_OUTPUT: lambda payload: scheduler.delete_output(
                _field(payload, "taskId"),
            ),
            CommandChannels.AUTH_GET_STATE: lambda _payload: session.auth_state().to_payload(),
            CommandChannels.AUTH_CHECK: lambda _payload: session.check_auth_status().to_payload(),
            CommandChannels.AUTH_OPEN_WEB: (
                lambda _payload: session.open_interactive_session().to_payload()
            ),
        }
        self._subscriptions: list[Unsubscribe] = [
            scheduler.on_progress(self._forward(EventChannels.JOB_PROGRESS)),
            scheduler.on_task_updated(self._forward(EventChannels.JOB_TASK_UPDATED)),
            scheduler.on_rate_limit(self._forward(EventChannels.JOB_RATE_LIMIT)),
            scheduler.on_done(self._forward(EventChannels.JOB_DONE)),
            scheduler.on_error_event(self._forward(EventChannels.JOB_ERROR)),
            session.on_auth_state(self._forward(EventChannels.AUTH_STATE)),
        ]

    @property
    def channels(self) -> tuple[str, ...]:
        return tuple(self._handlers)

    def handle(self, channel: str, payload: Any = None) -> dict[str, Any] | None:
        """Run one command; scheduler errors propagate to the caller unchanged."""

        handler = self._handlers.get(channel)
        if handler is None:
            raise ValueError(f"Unknown command channel: {channel}")
        logger.debug("Command %s", channel)
        return handler(payload)

    def close(self) -> None:
        for unsubscribe in self._subscriptions:
            unsubscribe()
        self._subscriptions.clear()

    def _create_job(self, payload: Mapping[str, Any] | None) -> dict[str, Any]:
        payload = payload or {}
        raw_output_dir = payload.get("outputDir")
        output_dir = Path(raw_output_dir) if raw_output_dir else self.settings.default_output_dir()
        bundle = self.scheduler.create_job(
            [_image_input(item) for item in payload.get("refs") or []],
            [str(text) for text in payload.get("prompts") or []],
            output_dir,
        )
        return bundle.to_payload()

    def _forward(self, channel: str) -> Callable[[Any], None]:
        def _send(event: Any) -> None:
            self._send(channel, event.to_payload())

        return _send


def _field(payload: Any, name: str) -> str:
    if isinstance(payload, Mapping):
        payload = payload.get(name)
    if not isinstance(payload, str) or not payload:
        raise ValidationError(f"Missing {name}.")
    return payload


def _image_input(item: Any) -> ImageInput:
    if isinstance(item, Mapping):
        file_path = item.get("filePath")
        if not file_path:
            raise ValidationError("Reference image is missing filePath.")
        return ImageInput(file_path=Path(file_path), file_name=item.get("fileName"))
    return ImageInput(file_path=Path(str(item)))
