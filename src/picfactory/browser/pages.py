"""Page-driving steps for one generation attempt.

Everything here runs on the session manager's browser thread. Steps raise
``TaskAttemptError`` subclasses for outcomes the executor must classify and
let Playwright errors propagate to the same boundary.
"""

from __future__ import annotations

import sys
import time
from collections.abc import Iterable
from contextlib import suppress
from pathlib import Path
from typing import TypeVar
from urllib.parse import urlparse

from playwright.sync_api import BrowserContext, Locator, Page
from playwright.sync_api import Error as PlaywrightError

from picfactory.browser import selectors
from picfactory.config import BrowserSettings
from picfactory.files import sanitize_filename
from picfactory.jobs.errors import NonRetryableError, RateLimitedError, RetryableError
from picfactory.jobs.failure_classifier import detect_rate_limit
from picfactory.jobs.models import AuthStage

NOT_LOGGED_IN_MESSAGE = "Not logged in to the remote site; log in and retry."
_T = TypeVar("_T", str, Path)

_POLL_MS = 250
_GENERATION_POLL_MS = 1_500
_MIN_SOURCE_EDGE = 128
_MIN_GENERATED_EDGE = 160
_MAX_DOWNLOAD_BUTTONS = 4
_MAX_CAPTURED_IMAGES = 8

_COLLECT_SOURCES_JS = """
([selector, minEdge]) => {
  const items = new Set();
  for (const node of document.querySelectorAll(selector)) {
    const src = node.currentSrc || node.src || '';
    const alt = (node.alt || '').toLowerCase();
    const width = node.naturalWidth || node.width || 0;
    const height = node.naturalHeight || node.height || 0;
    if (!src || width < minEdge || height < minEdge) continue;
    if (src.includes('avatar') || alt.includes('avatar') || alt.includes('profile')) continue;
    if (src.includes('/_next/image')) continue;
    items.add(src);
  }
  return Array.from(items);
}
"""
_IMAGE_META_JS = """
(node) => ({
  src: node.currentSrc || node.src || '',
  width: node.naturalWidth || node.width || 0,
  height: node.naturalHeight || node.height || 0,
  alt: (node.alt || '').toLowerCase(),
})
"""


def open_site_page(
    context: BrowserContext,
    settings: BrowserSettings,
    *,
    force_navigate: bool = False,
) -> Page:
    page = next((item for item in context.pages if not item.is_closed()), None)
    if page is None:
        page = context.new_page()
    if force_navigate or not _same_site(page.url, settings.site_url):
        page.goto(
            settings.site_url,
            timeout=settings.default_timeout_ms,
            wait_until="domcontentloaded",
        )
    with suppress(PlaywrightError):
        page.wait_for_load_state("networkidle", timeout=12_000)
    return page


def probe_auth_stage(
    context: BrowserContext,
    settings: BrowserSettings,
    *,
    force_navigate: bool = False,
) -> AuthStage:
    """Open the site and report whether the prompt input or a login prompt shows."""

    page = open_site_page(context, settings, force_navigate=force_navigate)
    return detect_auth_stage(page)


def detect_auth_stage(page: Page) -> AuthStage:
    if wait_for_any_selector(page, selectors.COMPOSER_INPUTS, 7_000) is not None:
        return AuthStage.LOGGED_IN
    if wait_for_any_selector(page, selectors.LOGIN_CTAS, 2_500) is not None:
        return AuthStage.LOGGED_OUT
    return AuthStage.UNKNOWN


def ensure_logged_in(page: Page, settings: BrowserSettings) -> None:
    """Wait for the prompt input, giving a human time to log in when prompted."""

    if wait_for_any_selector(page, selectors.COMPOSER_INPUTS, 8_000) is not None:
        return
    if wait_for_any_selector(page, selectors.LOGIN_CTAS, 2_500) is None:
        raise RetryableError(
            "Prompt input not found; the page may not be ready or its layout changed.",
        )
    if wait_for_any_selector(page, selectors.COMPOSER_INPUTS, settings.login_wait_ms) is None:
        raise NonRetryableError(NOT_LOGGED_IN_MESSAGE)


def start_new_conversation(page: Page) -> None:
    if click_first_visible(page, selectors.NEW_CHAT_BUTTONS, 3_000):
        page.wait_for_timeout(500)


def upload_reference_image(page: Page, file_path: Path) -> None:
    file_input = _file_input(page)
    if file_input is None:
        click_first_visible(page, selectors.ATTACH_BUTTONS, 3_000)
        page.wait_for_timeout(350)
        file_input = _file_input(page)
    if file_input is None:
        raise RetryableError("Image upload input not found on the page.")

    file_input.set_input_files(str(file_path))
    wait_for_any_selector(page, selectors.ATTACHMENT_INDICATORS, 8_000)


def submit_prompt(page: Page, prompt: str) -> None:
    text = prompt.strip()
    if not text:
        raise NonRetryableError("Prompt text is empty.")
    composer = wait_for_any_selector(page, selectors.COMPOSER_INPUTS, 20_000)
    if composer is None:
        raise RetryableError("Prompt input disappeared before submitting.")

    tag_name = ""
    with suppress(PlaywrightError):
        tag_name = composer.evaluate("(node) => node.tagName.toLowerCase()") or ""
    if tag_name == "textarea":
        composer.fill(text)
    else:
        composer.click()
        with suppress(PlaywrightError):
            page.keyboard.press("Meta+A" if sys.platform == "darwin" else "Control+A")
        page.keyboard.type(text, delay=8)

    if not click_first_visible(page, selectors.SEND_BUTTONS, 2_000):
        composer.press("Enter")


def collect_image_sources(page: Page) -> list[str]:
    try:
        sources = page.evaluate(
            _COLLECT_SOURCES_JS,
            [", ".join(selectors.RESULT_IMAGES), _MIN_SOURCE_EDGE],
        )
    except PlaywrightError:
        return []
    return _dedupe(str(source) for source in sources or [])


def read_page_text(page: Page) -> str:
    try:
        return page.locator("body").inner_text(timeout=1_000)
    except PlaywrightError:
        return ""


def wait_for_generation(page: Page, baseline_sources: set[str], timeout_ms: int) -> None:
    """Poll until a new result image shows; rate-limit notices abort the wait."""

    deadline = time.monotonic() + timeout_ms / 1000
    while time.monotonic() < deadline:
        signal = detect_rate_limit(read_page_text(page))
        if signal is not None:
            raise RateLimitedError(signal.message, wait_seconds=signal.wait_seconds)
        if any(source not in baseline_sources for source in collect_image_sources(page)):
            return
        page.wait_for_timeout(_GENERATION_POLL_MS)
    raise RetryableError("Timed out waiting for the generated image.")


def collect_generated_outputs(
    page: Page,
    task_dir: Path,
    baseline_sources: set[str],
    settings: BrowserSettings,
) -> list[Path]:
    """Wait for the result, then save it via downloads or, failing that, screenshots."""

    wait_for_generation(page, baseline_sources, settings.generation_timeout_ms)
    downloads = attempt_download_outputs(page, task_dir)
    if downloads:
        return _dedupe(downloads)
    return _dedupe(capture_generated_images(page, task_dir, baseline_sources))


def attempt_download_outputs(page: Page, task_dir: Path) -> list[Path]:
    outputs: list[Path] = []
    for selector in selectors.DOWNLOAD_BUTTONS:
        elements = page.locator(selector)
        count = elements.count()
        for index in range(min(count, _MAX_DOWNLOAD_BUTTONS)):
            element = elements.nth(index)
            if not _is_visible(element):
                continue
            try:
                with page.expect_download(timeout=7_500) as download_info:
                    element.click(timeout=3_000)
                download = download_info.value
                suggested = download.suggested_filename or f"generated-{_millis()}.png"
                target = task_dir / f"{index + 1:02d}-{sanitize_filename(suggested)}"
                download.save_as(target)
            except PlaywrightError:
                continue
            outputs.append(target)
        if outputs:
            return outputs
    return outputs


def capture_generated_images(page: Page, task_dir: Path, baseline_sources: set[str]) -> list[Path]:
    captured: list[Path] = []
    images = page.locator(", ".join(selectors.RESULT_IMAGES))
    for index in range(min(images.count(), _MAX_CAPTURED_IMAGES)):
        image = images.nth(index)
        try:
            meta = image.evaluate(_IMAGE_META_JS)
        except PlaywrightError:
            continue
        if not is_likely_generated_image(
            meta.get("src", ""),
            meta.get("alt", ""),
            meta.get("width", 0),
            meta.get("height", 0),
        ):
            continue
        if meta.get("src") in baseline_sources:
            continue

        target = task_dir / f"generated-{_millis()}-{index + 1}.png"
        try:
            with suppress(PlaywrightError):
                image.scroll_into_view_if_needed()
            image.screenshot(path=str(target), timeout=6_000)
        except PlaywrightError:
            continue
        captured.append(target)

    if not captured:
        fallback = task_dir / f"generated-fallback-{_millis()}.png"
        page.screenshot(path=str(fallback), full_page=False)
        captured.append(fallback)
    return captured


def is_likely_generated_image(src: str, alt: str, width: int, height: int) -> bool:
    if width < _MIN_GENERATED_EDGE or height < _MIN_GENERATED_EDGE:
        return False
    return not ("avatar" in src or "avatar" in alt or "profile" in alt)


def wait_for_any_selector(
    page: Page,
    candidates: Iterable[str],
    timeout_ms: int,
) -> Locator | None:
    options = tuple(candidates)
    deadline = time.monotonic() + timeout_ms / 1000
    while True:
        for selector in options:
            locator = page.locator(selector).first
            if _is_visible(locator):
                return locator
        if time.monotonic() >= deadline:
            return None
        page.wait_for_timeout(_POLL_MS)


def click_first_visible(page: Page, candidates: Iterable[str], timeout_ms: int) -> bool:
    element = wait_for_any_selector(page, candidates, timeout_ms)
    if element is None:
        return False
    element.click(timeout=3_000)
    return True


def _file_input(page: Page) -> Locator | None:
    for selector in selectors.FILE_INPUTS:
        locator = page.locator(selector)
        if locator.count() > 0:
            return locator.first
    return None


def _is_visible(locator: Locator) -> bool:
    try:
        return locator.is_visible()
    except PlaywrightError:
        return False


def _same_site(current_url: str, site_url: str) -> bool:
    current = urlparse(current_url)
    target = urlparse(site_url)
    return current.scheme == target.scheme and current.netloc == target.netloc


def _millis() -> int:
    return int(time.time() * 1000)


def _dedupe(values: Iterable[_T]) -> list[_T]:
    seen: set[_T] = set()
    ordered: list[_T] = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        ordered.append(value)
    return ordered
