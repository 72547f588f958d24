"""Deterministic failure classification for task attempts against the web app."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

DEFAULT_RATE_LIMIT_SECONDS = 15 * 60


class FailureClass(str, Enum):
    """Normalized failure classes used by the scheduler retry policy."""

    RATE_LIMITED = "rate_limited"
    ACCESS_OR_AUTH = "access_or_auth"
    NON_RETRYABLE = "non_retryable"
    TRANSIENT = "transient"


_RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    "rate limit",
    "try again",
    "too many requests",
    "please wait",
    "请稍后",
    "请等待",
    "达到上限",
    "请求过于频繁",
)
_ACCESS_OR_AUTH_PATTERNS: tuple[str, ...] = (
    "not logged in",
    "log in",
    "login",
    "sign in",
    "unauthorized",
    "未登录",
    "登录",
)
_RATE_LIMIT_SUMMARY = re.compile(r"rate limit|try again|too many|请稍后|请等待|上限|频繁", re.IGNORECASE)
_WAIT_UNITS: tuple[tuple[re.Pattern[str], int], ...] = (
    (re.compile(r"(\d+)\s*(?:minutes?|mins?|分钟)", re.IGNORECASE), 60),
    (re.compile(r"(\d+)\s*(?:seconds?|secs?|秒)", re.IGNORECASE), 1),
    (re.compile(r"(\d+)\s*(?:hours?|hrs?|小时)", re.IGNORECASE), 3600),
)
_MISSING_BROWSER = re.compile(
    r"executable doesn't exist|download new browsers|playwright install",
    re.IGNORECASE,
)


@dataclass(slots=True)
class RateLimitSignal:
    """Rate-limit notice found in the page text."""

    wait_seconds: int
    message: str


@dataclass(slots=True)
class TaskFailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    matched_rule: str
    matched_pattern: str | None
    rate_limit_seconds: int | None = None

    @property
    def retryable(self) -> bool:
        return self.failure_class in {FailureClass.RATE_LIMITED, FailureClass.TRANSIENT}


def parse_rate_limit_wait_seconds(text: str) -> int | None:
    """Extract a stated cooldown; minutes win over seconds over hours."""

    for pattern, multiplier in _WAIT_UNITS:
        match = pattern.search(text)
        if match is None:
            continue
        value = int(match.group(1))
        if value > 0:
            return value * multiplier
    return None


def detect_rate_limit(page_text: str) -> RateLimitSignal | None:
    """Recognize a rate-limit notice in visible page text."""

    if not page_text:
        return None
    if _first_match(page_text.lower(), _RATE_LIMIT_PATTERNS) is None:
        return None

    wait_seconds = parse_rate_limit_wait_seconds(page_text) or DEFAULT_RATE_LIMIT_SECONDS
    summary = next(
        (
            line.strip()
            for line in page_text.splitlines()
            if line.strip() and _RATE_LIMIT_SUMMARY.search(line)
        ),
        None,
    )
    return RateLimitSignal(
        wait_seconds=wait_seconds,
        message=summary or f"Rate limit detected, retrying in {wait_seconds} seconds.",
    )


def is_auth_failure(message: str | None) -> bool:
    """Whether a failure reason points at a missing or expired login."""

    if not message:
        return False
    return _first_match(message.lower(), _ACCESS_OR_AUTH_PATTERNS) is not None


def classify_failure_message(
    message: str,
    *,
    retryable_hint: bool = True,
) -> TaskFailureClassification:
    """Classify an attempt failure; retry is the default bias.

    A stated cooldown always wins. Auth-looking messages stay retryable unless
    the raiser already proved the failure needs an operator (``retryable_hint``
    is False), since only an explicit login check shows the session is gone.
    """

    haystack = message.lower()
    wait_seconds = parse_rate_limit_wait_seconds(message)
    if wait_seconds is not None:
        return TaskFailureClassification(
            failure_class=FailureClass.RATE_LIMITED,
            matched_rule="stated_cooldown",
            matched_pattern=_first_match(haystack, _RATE_LIMIT_PATTERNS),
            rate_limit_seconds=wait_seconds,
        )

    pattern = _first_match(haystack, _ACCESS_OR_AUTH_PATTERNS)
    if pattern is not None:
        return TaskFailureClassification(
            failure_class=(
                FailureClass.TRANSIENT if retryable_hint else FailureClass.ACCESS_OR_AUTH
            ),
            matched_rule="auth_suspected" if retryable_hint else "access_or_auth",
            matched_pattern=pattern,
        )

    if not retryable_hint:
        return TaskFailureClassification(
            failure_class=FailureClass.NON_RETRYABLE,
            matched_rule="raised_non_retryable",
            matched_pattern=None,
        )

    return TaskFailureClassification(
        failure_class=FailureClass.TRANSIENT,
        matched_rule="fallback_retryable",
        matched_pattern=None,
    )


def sanitize_error_message(error: BaseException | str | None) -> str:
    """First line of an error, with a readable hint for missing browser binaries."""

    raw = str(error) if error is not None else ""
    message = raw.strip()
    if not message:
        return ""
    if _MISSING_BROWSER.search(message):
        return "Playwright browser is not installed; run `playwright install chromium`."
    return message.splitlines()[0].strip()


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
