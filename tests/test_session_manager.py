from __future__ import annotations

import threading

import allure
import pytest
from playwright.sync_api import Error as PlaywrightError

from picfactory.browser import pages
from picfactory.browser.session import (
    BUSY_MESSAGE,
    NO_SESSION_MESSAGE,
    RemoteSessionManager,
    is_context_alive,
)
from picfactory.config import BrowserSettings
from picfactory.jobs.models import AuthStage, AuthState

pytestmark = [
    allure.epic("Remote Session"),
    allure.feature("Session Manager"),
]


class _FakePage:
    def __init__(self) -> None:
        self.fronted = 0

    def bring_to_front(self) -> None:
        self.fronted += 1


class _FakeContext:
    def __init__(self, headless: bool) -> None:
        self.headless = headless
        self.closed = False
        self.close_calls = 0
        self.page = _FakePage()
        self._handlers: list = []
        self.threads: set[str] = set()

    def cookies(self) -> list:
        self.threads.add(threading.current_thread().name)
        if self.closed:
            raise PlaywrightError("Target page, context or browser has been closed")
        return []

    def on(self, event: str, handler) -> None:
        assert event == "close"
        self._handlers.append(handler)

    def close(self) -> None:
        self.close_calls += 1
        if self.closed:
            return
        self.closed = True
        for handler in self._handlers:
            handler(self)

    def wait_for_event(self, event: str, timeout: float) -> None:
        assert (event, timeout) == ("close", 0)
        self.close()


class _FakeLauncher:
    def __init__(self) -> None:
        self.launched: list[_FakeContext] = []
        self.stopped = 0

    def launch(self, *, headless: bool) -> _FakeContext:
        context = _FakeContext(headless)
        self.launched.append(context)
        return context

    def stop(self) -> None:
        self.stopped += 1


class _Probe:
    def __init__(self, stage: AuthStage = AuthStage.LOGGED_IN) -> None:
        self.stage = stage
        self.error: Exception | None = None
        self.calls: list[tuple[_FakeContext, bool]] = []

    def __call__(self, context, settings, force_navigate: bool) -> AuthStage:
        self.calls.append((context, force_navigate))
        if self.error is not None:
            raise self.error
        return self.stage


@pytest.fixture()
def launcher() -> _FakeLauncher:
    return _FakeLauncher()


@pytest.fixture()
def probe() -> _Probe:
    return _Probe()


@pytest.fixture()
def manager(launcher, probe, monkeypatch):
    monkeypatch.setattr(
        pages,
        "open_site_page",
        lambda context, settings, force_navigate=False: context.page,
    )
    manager = RemoteSessionManager(BrowserSettings(headless=True), launcher=launcher, auth_probe=probe)
    yield manager
    manager.close()


def test_initial_state_is_unknown(manager) -> None:
    assert manager.auth_state().stage == AuthStage.UNKNOWN


def test_check_without_interactive_session_reports_unknown(manager, probe) -> None:
    states: list[AuthState] = []
    manager.on_auth_state(states.append)

    state = manager.check_auth_status()

    assert state.stage == AuthStage.UNKNOWN
    assert state.message == NO_SESSION_MESSAGE
    assert [item.stage for item in states] == [AuthStage.CHECKING, AuthStage.UNKNOWN]
    assert probe.calls == []


def test_open_interactive_session_launches_visible_browser_once(manager, launcher, probe) -> None:
    first = manager.open_interactive_session()
    second = manager.open_interactive_session()

    assert first.stage == second.stage == AuthStage.LOGGED_IN
    assert len(launcher.launched) == 1
    context = launcher.launched[0]
    assert context.headless is False
    assert context.page.fronted == 2
    assert manager.check_auth_status().stage == AuthStage.LOGGED_IN
    assert [call[0] for call in probe.calls] == [context] * 3


def test_probe_result_is_reported(manager, probe) -> None:
    probe.stage = AuthStage.LOGGED_OUT

    assert manager.open_interactive_session().stage == AuthStage.LOGGED_OUT
    assert manager.auth_state().stage == AuthStage.LOGGED_OUT


def test_closed_window_is_detected_via_close_event(manager, launcher) -> None:
    manager.open_interactive_session()
    launcher.launched[0].close()

    assert manager.check_auth_status().stage == AuthStage.UNKNOWN

    manager.open_interactive_session()
    assert len(launcher.launched) == 2


def test_crashed_browser_is_detected_without_close_event(manager, launcher) -> None:
    manager.open_interactive_session()
    launcher.launched[0].closed = True

    assert manager.check_auth_status().stage == AuthStage.UNKNOWN
    threads = launcher.launched[0].threads
    assert threads
    assert all(name.startswith("picfactory-browser") for name in threads)


def test_probe_failure_becomes_error_state(manager, probe) -> None:
    manager.open_interactive_session()
    probe.error = PlaywrightError("Navigation failed\nCall log: ...")

    state = manager.check_auth_status()

    assert state.stage == AuthStage.ERROR
    assert state.message == "Navigation failed"


def test_running_task_makes_auth_commands_busy(manager, launcher, probe) -> None:
    entered = threading.Event()
    release = threading.Event()
    results: list[str] = []

    def _task(context) -> str:
        entered.set()
        assert release.wait(timeout=5)
        return "done"

    worker = threading.Thread(target=lambda: results.append(manager.run_task(_task)))
    worker.start()
    assert entered.wait(timeout=5)

    assert manager.auth_state().stage == AuthStage.BUSY
    checked = manager.check_auth_status()
    opened = manager.open_interactive_session()

    release.set()
    worker.join(timeout=5)
    assert (checked.stage, checked.message) == (AuthStage.BUSY, BUSY_MESSAGE)
    assert opened.stage == AuthStage.BUSY
    assert results == ["done"]
    assert len(launcher.launched) == 1
    assert probe.calls == []
    assert manager.auth_state().stage == AuthStage.UNKNOWN


def test_run_task_uses_short_lived_session_without_interactive_one(manager, launcher) -> None:
    seen: list[_FakeContext] = []

    manager.run_task(seen.append)

    assert seen == launcher.launched
    assert seen[0].headless is True
    assert seen[0].closed


def test_run_task_reuses_interactive_session_and_keeps_it_open(manager, launcher) -> None:
    manager.open_interactive_session()
    seen: list[_FakeContext] = []

    manager.run_task(seen.append)

    assert seen == [launcher.launched[0]]
    assert not seen[0].closed


def test_run_task_runs_on_the_browser_thread(manager) -> None:
    names = manager.run_task(lambda _context: threading.current_thread().name)

    assert names.startswith("picfactory-browser")


def test_probe_unattended_sets_state(manager, launcher, probe) -> None:
    probe.stage = AuthStage.LOGGED_OUT

    state = manager.probe_unattended()

    assert state.stage == AuthStage.LOGGED_OUT
    assert probe.calls == [(launcher.launched[0], True)]
    assert launcher.launched[0].closed


def test_wait_for_interactive_close_returns_after_window_closes(manager, launcher) -> None:
    manager.open_interactive_session()

    manager.wait_for_interactive_close()

    assert launcher.launched[0].closed
    assert manager.check_auth_status().stage == AuthStage.UNKNOWN


def test_mark_logged_out_notifies_observers(manager) -> None:
    states: list[AuthState] = []
    manager.on_auth_state(states.append)

    manager.mark_logged_out("Not logged in")

    assert states[-1].stage == AuthStage.LOGGED_OUT
    assert states[-1].to_payload()["message"] == "Not logged in"


def test_close_shuts_down_browser_once(launcher, probe, monkeypatch) -> None:
    monkeypatch.setattr(
        pages,
        "open_site_page",
        lambda context, settings, force_navigate=False: context.page,
    )
    manager = RemoteSessionManager(BrowserSettings(), launcher=launcher, auth_probe=probe)
    manager.open_interactive_session()

    manager.close()
    manager.close()

    assert launcher.stopped == 1
    assert launcher.launched[0].closed


def test_is_context_alive() -> None:
    context = _FakeContext(headless=True)

    assert is_context_alive(context)
    context.closed = True
    assert not is_context_alive(context)
    assert not is_context_alive(None)
