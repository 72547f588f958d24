"""Object graph for one process: file service, session manager, executor, scheduler."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from picfactory.bridge import CommandBridge, Send
from picfactory.browser.session import BrowserLauncher, RemoteSessionManager
from picfactory.config import Settings
from picfactory.files import FileService
from picfactory.jobs.executor import BrowserExecutor, DisabledExecutor, MockExecutor, TaskExecutor
from picfactory.jobs.scheduler import JobScheduler, SchedulerClock

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Runtime:
    settings: Settings
    file_service: FileService
    session: RemoteSessionManager
    executor: TaskExecutor
    scheduler: JobScheduler
    bridges: list[CommandBridge] = field(default_factory=list)

    def attach_bridge(self, send: Send) -> CommandBridge:
        """Expose this runtime on named channels; push events go to ``send``."""

        bridge = CommandBridge(self.scheduler, self.session, self.settings, send)
        self.bridges.append(bridge)
        return bridge

    def close(self) -> None:
        for bridge in self.bridges:
            bridge.close()
        self.bridges.clear()
        self.session.close()


def select_executor(
    settings: Settings,
    file_service: FileService,
    session: RemoteSessionManager,
) -> TaskExecutor:
    """Mock flag wins, then the live flag; otherwise every task fails with a hint."""

    if settings.runner.mock_runner:
        logger.info("Using mock executor (latency %.2fs)", settings.runner.mock_latency_seconds)
        return MockExecutor(file_service, latency_seconds=settings.runner.mock_latency_seconds)
    if settings.runner.enable_real_runner:
        logger.info("Using browser executor against %s", settings.browser.site_url)
        return BrowserExecutor(session, file_service, settings.browser)
    logger.warning("No executor enabled; tasks will fail until one is configured")
    return DisabledExecutor()


def build_runtime(
    settings: Settings | None = None,
    *,
    session: RemoteSessionManager | None = None,
    clock: SchedulerClock | None = None,
) -> Runtime:
    settings = settings or Settings.from_env()
    settings.validate()
    file_service = FileService()
    session = session or RemoteSessionManager(
        settings.browser,
        launcher=BrowserLauncher(settings.browser, file_service),
    )
    executor = select_executor(settings, file_service, session)
    scheduler = JobScheduler(
        executor=executor,
        file_service=file_service,
        settings=settings.scheduler,
        clock=clock,
    )
    return Runtime(
        settings=settings,
        file_service=file_service,
        session=session,
        executor=executor,
        scheduler=scheduler,
    )
