"""Remote session manager: one persistent browser profile, one browser thread.

The sync Playwright API is bound to the thread that started it, so every call
that touches a browser object is submitted to a single-worker executor owned by
the manager. Callers on job threads block on the returned future.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime
from typing import Any, Protocol, TypeVar

from playwright.sync_api import BrowserContext, Playwright, sync_playwright
from playwright.sync_api import Error as PlaywrightError

from picfactory.browser import pages
from picfactory.config import BrowserSettings
from picfactory.files import FileService
from picfactory.jobs.events import Observers, Unsubscribe
from picfactory.jobs.failure_classifier import sanitize_error_message
from picfactory.jobs.models import AuthStage, AuthState

logger = logging.getLogger(__name__)

T = TypeVar("T")

BUSY_MESSAGE = "A generation task is using the browser; try the login check later."
NO_SESSION_MESSAGE = "No open web session; open it to log in or check the login state."
AuthProbe = Callable[[BrowserContext, BrowserSettings, bool], AuthStage]


class ContextLauncher(Protocol):
    def launch(self, *, headless: bool) -> BrowserContext: ...

    def stop(self) -> None: ...


class BrowserLauncher:
    """Starts Playwright lazily and opens persistent contexts on the shared profile."""

    def __init__(self, settings: BrowserSettings, file_service: FileService | None = None) -> None:
        self.settings = settings
        self.file_service = file_service or FileService()
        self._playwright: Playwright | None = None

    def launch(self, *, headless: bool) -> BrowserContext:
        if self._playwright is None:
            self._playwright = sync_playwright().start()
        profile_dir = self.file_service.ensure_dir(self.settings.profile_dir)
        options: dict[str, Any] = {
            "headless": headless,
            "accept_downloads": True,
            "timeout": self.settings.default_timeout_ms,
            "viewport": {"width": 1440, "height": 960},
        }
        if self.settings.browser_channel:
            options["channel"] = self.settings.browser_channel
        logger.info("Launching browser context: profile=%s headless=%s", profile_dir, headless)
        context = self._playwright.chromium.launch_persistent_context(str(profile_dir), **options)
        context.set_default_timeout(self.settings.action_timeout_ms)
        context.set_default_navigation_timeout(self.settings.default_timeout_ms)
        return context

    def stop(self) -> None:
        if self._playwright is not None:
            self._playwright.stop()
            self._playwright = None


def is_context_alive(context: BrowserContext | None) -> bool:
    """Round-trip to the browser; a cached handle outlives a crashed or closed window."""

    if context is None:
        return False
    try:
        context.cookies()
    except PlaywrightError:
        return False
    return True


def _default_probe(
    context: BrowserContext,
    settings: BrowserSettings,
    force_navigate: bool,
) -> AuthStage:
    return pages.probe_auth_stage(context, settings, force_navigate=force_navigate)


class RemoteSessionManager:
    """Owns the browser profile, the operator's visible session, and the login state."""

    def __init__(
        self,
        settings: BrowserSettings,
        *,
        launcher: ContextLauncher | None = None,
        auth_probe: AuthProbe | None = None,
    ) -> None:
        self.settings = settings
        self.launcher = launcher or BrowserLauncher(settings)
        self.auth_probe = auth_probe or _default_probe
        self._browser_thread = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix="picfactory-browser",
        )
        self._lock = threading.Lock()
        self._manual_context: BrowserContext | None = None
        self._busy = 0
        self._state = AuthState(stage=AuthStage.UNKNOWN, checked_at=_now())
        self._auth_observers: Observers[AuthState] = Observers("auth-state")
        self._closed = False

    def on_auth_state(self, callback: Callable[[AuthState], None]) -> Unsubscribe:
        return self._auth_observers.subscribe(callback)

    def auth_state(self) -> AuthState:
        """Last known state; reported as ``busy`` while a task holds the browser."""

        with self._lock:
            if self._busy > 0:
                return _busy_state()
            return self._state

    @property
    def busy(self) -> bool:
        with self._lock:
            return self._busy > 0

    def check_auth_status(self) -> AuthState:
        """Probe the open session without disturbing a running task."""

        if self.busy:
            return self._reject_busy()
        self._set_state(AuthStage.CHECKING)
        try:
            stage = self._call(self._probe_manual)
        except (PlaywrightError, OSError) as error:
            logger.warning("Login check failed: %s", error)
            return self._set_state(AuthStage.ERROR, sanitize_error_message(error))
        if stage is None:
            return self._set_state(AuthStage.UNKNOWN, NO_SESSION_MESSAGE)
        return self._set_state(stage)

    def open_interactive_session(self) -> AuthState:
        """Show a visible browser on the site so the operator can log in."""

        if self.busy:
            return self._reject_busy()
        self._set_state(AuthStage.CHECKING, "Opening the web session.")
        try:
            stage = self._call(self._open_interactive)
        except (PlaywrightError, OSError) as error:
            logger.warning("Opening the web session failed: %s", error)
            return self._set_state(AuthStage.ERROR, sanitize_error_message(error))
        return self._set_state(stage)

    def run_task(self, fn: Callable[[BrowserContext], T]) -> T:
        """Run one attempt on the browser thread, reusing the visible session if open."""

        with self._lock:
            self._busy += 1
        try:
            return self._call(lambda: self._run_with_context(fn))
        finally:
            with self._lock:
                self._busy -= 1

    def probe_unattended(self) -> AuthState:
        """Probe the saved profile in a task session when no window is open."""

        try:
            stage = self.run_task(lambda context: self.auth_probe(context, self.settings, True))
        except (PlaywrightError, OSError) as error:
            logger.warning("Login probe failed: %s", error)
            return self._set_state(AuthStage.ERROR, sanitize_error_message(error))
        return self._set_state(stage)

    def wait_for_interactive_close(self) -> None:
        """Block until the operator closes the visible browser window."""

        self._call(self._wait_manual_close)

    def mark_logged_in(self, message: str | None = None) -> AuthState:
        return self._set_state(AuthStage.LOGGED_IN, message)

    def mark_logged_out(self, message: str | None = None) -> AuthState:
        return self._set_state(AuthStage.LOGGED_OUT, message)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        try:
            self._call(self._shutdown_browser)
        finally:
            self._browser_thread.shutdown(wait=True)

    # -- browser thread -------------------------------------------------------

    def _call(self, fn: Callable[[], T]) -> T:
        return self._browser_thread.submit(fn).result()

    def _probe_manual(self) -> AuthStage | None:
        context = self._live_manual_context()
        if context is None:
            return None
        return self.auth_probe(context, self.settings, False)

    def _wait_manual_close(self) -> None:
        context = self._live_manual_context()
        if context is None:
            return
        try:
            # Events only dispatch while this thread is inside a Playwright call.
            context.wait_for_event("close", timeout=0)
        except PlaywrightError as error:
            logger.debug("Web session ended: %s", error)
        self._forget_manual_context(context)

    def _live_manual_context(self) -> BrowserContext | None:
        context = self._manual_context
        if context is not None and not is_context_alive(context):
            logger.info("Web session is gone; dropping the cached handle")
            self._forget_manual_context(context)
            return None
        return context

    def _open_interactive(self) -> AuthStage:
        context = self._live_manual_context()
        if context is None:
            context = self.launcher.launch(headless=False)
            context.on("close", lambda _context: self._forget_manual_context(_context))
            with self._lock:
                self._manual_context = context
        page = pages.open_site_page(context, self.settings, force_navigate=True)
        page.bring_to_front()
        return self.auth_probe(context, self.settings, False)

    def _run_with_context(self, fn: Callable[[BrowserContext], T]) -> T:
        context = self._live_manual_context()
        if context is not None:
            return fn(context)
        context = self.launcher.launch(headless=self.settings.headless)
        try:
            return fn(context)
        finally:
            try:
                context.close()
            except PlaywrightError as error:
                logger.debug("Closing task browser context failed: %s", error)

    def _shutdown_browser(self) -> None:
        context = self._manual_context
        self._forget_manual_context(context)
        if is_context_alive(context):
            try:
                context.close()
            except PlaywrightError as error:
                logger.debug("Closing web session failed: %s", error)
        self.launcher.stop()

    def _forget_manual_context(self, context: BrowserContext | None) -> None:
        with self._lock:
            if self._manual_context is context:
                self._manual_context = None

    def _set_state(self, stage: AuthStage, message: str | None = None) -> AuthState:
        state = AuthState(stage=stage, checked_at=_now(), message=message)
        with self._lock:
            self._state = state
        logger.info("Auth state: %s%s", stage.value, f" ({message})" if message else "")
        self._auth_observers.emit(state)
        return state

    def _reject_busy(self) -> AuthState:
        state = _busy_state()
        self._auth_observers.emit(state)
        return state


def _busy_state() -> AuthState:
    return AuthState(stage=AuthStage.BUSY, checked_at=_now(), message=BUSY_MESSAGE)


def _now() -> datetime:
    return datetime.now(tz=UTC)
