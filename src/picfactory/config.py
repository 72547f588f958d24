"""Runtime configuration for the scheduler, executors, and browser sessions."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path

DEFAULT_SITE_URL = "https://chatgpt.com/"


@dataclass(slots=True)
class RunnerSettings:
    """Executor selection flags."""

    mock_runner: bool = False
    enable_real_runner: bool = False
    mock_latency_seconds: float = 0.8


@dataclass(slots=True)
class BrowserSettings:
    """Browser session and page-driving settings."""

    site_url: str = DEFAULT_SITE_URL
    headless: bool = False
    profile_dir: Path = field(
        default_factory=lambda: Path.home() / ".picfactory-runtime" / "playwright-profile",
    )
    browser_channel: str | None = None
    default_timeout_ms: int = 45_000
    action_timeout_ms: int = 15_000
    generation_timeout_ms: int = 240_000
    login_wait_ms: int = 5 * 60_000


@dataclass(slots=True)
class SchedulerSettings:
    """Job execution loop tunables."""

    max_retry: int = 3
    retry_base_seconds: float = 1.0
    pause_poll_seconds: float = 0.25
    idle_poll_seconds: float = 0.2
    countdown_report_every: int = 5


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    output_root: Path = field(default_factory=lambda: Path.home() / "Downloads" / "PicFactory")
    runner: RunnerSettings = field(default_factory=RunnerSettings)
    browser: BrowserSettings = field(default_factory=BrowserSettings)
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)

    @classmethod
    def from_env(cls, output_root: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local use."""

        browser_defaults = BrowserSettings()
        profile_dir = os.getenv("PICFACTORY_PROFILE_DIR", "").strip()
        channel = os.getenv("PICFACTORY_BROWSER_CHANNEL", "").strip()
        env_output_root = os.getenv("PICFACTORY_OUTPUT_ROOT", "").strip()
        return cls(
            output_root=output_root
            or (Path(env_output_root) if env_output_root else Settings().output_root),
            runner=RunnerSettings(
                mock_runner=_env_bool("PICFACTORY_MOCK_RUNNER", default=False),
                enable_real_runner=_env_bool("PICFACTORY_ENABLE_REAL_RUNNER", default=False),
                mock_latency_seconds=_env_positive_int("PICFACTORY_MOCK_LATENCY_MS", 800) / 1000,
            ),
            browser=BrowserSettings(
                site_url=os.getenv("PICFACTORY_SITE_URL", DEFAULT_SITE_URL).strip()
                or DEFAULT_SITE_URL,
                headless=_env_bool("PICFACTORY_HEADLESS", default=False),
                profile_dir=Path(profile_dir) if profile_dir else browser_defaults.profile_dir,
                browser_channel=channel or None,
                generation_timeout_ms=_env_positive_int(
                    "PICFACTORY_GENERATION_TIMEOUT_MS",
                    browser_defaults.generation_timeout_ms,
                ),
                login_wait_ms=_env_positive_int(
                    "PICFACTORY_LOGIN_WAIT_MS",
                    browser_defaults.login_wait_ms,
                ),
            ),
            scheduler=SchedulerSettings(
                max_retry=int(os.getenv("PICFACTORY_MAX_RETRY", "3")),
                retry_base_seconds=float(os.getenv("PICFACTORY_RETRY_BASE_SECONDS", "1.0")),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the scheduler cannot run with."""

        if self.scheduler.max_retry < 0:
            raise ValueError("PICFACTORY_MAX_RETRY must be >= 0.")
        if self.scheduler.retry_base_seconds < 0:
            raise ValueError("PICFACTORY_RETRY_BASE_SECONDS must be >= 0.")
        if not self.browser.site_url.startswith(("http://", "https://")):
            raise ValueError(
                "Invalid PICFACTORY_SITE_URL: "
                f"{self.browser.site_url!r}. Expected an http:// or https:// URL.",
            )

    def default_output_dir(self, today: date | None = None) -> Path:
        """Output directory used when a job is created without one."""

        day = today or date.today()
        return self.output_root / f"job-{day.isoformat()}"


def _env_positive_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        return default
    if value <= 0:
        return default
    return value


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
