"""
Playwright-backed page fetcher.

Each instance starts its own sync Playwright driver, Chromium browser and
context, so instances must not cross threads.
"""

from __future__ import annotations

import json
import logging
import random
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from bs4 import BeautifulSoup
from playwright.sync_api import Error as PWError
from playwright.sync_api import TimeoutError as PWTimeout
from playwright.sync_api import sync_playwright

from harvester.config import BrowserSettings, resolve_project_path
from harvester.domain.harvest import FieldSelector
from harvester.scraping.errors import (
    AccessDeniedError,
    FatalInfrastructureError,
    SessionLostError,
    TransientNetworkError,
)
from harvester.scraping.fetcher.base import PageFetcher
from harvester.scraping.logging_utils import log_event
from harvester.scraping.parsing import HTMLParsingLayer

logger = logging.getLogger(__name__)

SESSION_LOST_MARKERS = (
    "Target closed",
    "Target page, context or browser has been closed",
    "Session closed",
    "Protocol error",
    "Browser has been closed",
)

LAUNCH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--no-sandbox",
    "--disable-dev-shm-usage",
]


def is_session_lost(exc: BaseException) -> bool:
    message = str(exc)
    return any(marker in message for marker in SESSION_LOST_MARKERS)


def load_cookie_file(path: str) -> list[dict[str, Any]]:
    """
    Read browser cookies exported as a JSON list; missing file means none.
    """

    cookie_path = resolve_project_path(path)
    if not cookie_path.exists():
        return []
    raw = json.loads(Path(cookie_path).read_text(encoding="utf-8"))
    if not isinstance(raw, list):
        raise ValueError(f"Cookie file must hold a JSON list: {cookie_path}")

    cookies: list[dict[str, Any]] = []
    for entry in raw:
        if not isinstance(entry, dict) or not entry.get("name") or "value" not in entry:
            continue
        cookie = {
            "name": str(entry["name"]),
            "value": str(entry["value"]),
            "domain": entry.get("domain"),
            "path": entry.get("path") or "/",
        }
        if isinstance(entry.get("expires"), (int, float)) and entry["expires"] > 0:
            cookie["expires"] = float(entry["expires"])
        if isinstance(entry.get("httpOnly"), bool):
            cookie["httpOnly"] = entry["httpOnly"]
        if isinstance(entry.get("secure"), bool):
            cookie["secure"] = entry["secure"]
        if cookie["domain"]:
            cookies.append(cookie)
    return cookies


class PlaywrightPageFetcher(PageFetcher):
    def __init__(
        self,
        *,
        settings: BrowserSettings,
        rng: random.Random | None = None,
    ) -> None:
        self._settings = settings
        self._html: str | None = None
        self._soup: BeautifulSoup | None = None
        user_agent = (rng or random).choice(settings.user_agents)

        self._playwright = sync_playwright().start()
        try:
            self._browser = self._playwright.chromium.launch(
                headless=settings.headless,
                args=LAUNCH_ARGS,
            )
            self._context = self._browser.new_context(
                user_agent=user_agent,
                viewport={"width": settings.viewport_width, "height": settings.viewport_height},
            )
            cookies = load_cookie_file(settings.cookies_path)
            if cookies:
                self._context.add_cookies(cookies)
            self._page = self._context.new_page()
        except PWError as exc:
            self._playwright.stop()
            raise FatalInfrastructureError(f"Unable to start browser session: {exc}") from exc

    def navigate(self, url: str, *, timeout: float, wait_for: str | None = None) -> int | None:
        self._html = None
        self._soup = None
        timeout_ms = timeout * 1000
        try:
            response = self._page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
            if wait_for:
                try:
                    self._page.wait_for_selector(
                        wait_for,
                        timeout=self._settings.selector_timeout_seconds * 1000,
                    )
                except PWTimeout:
                    log_event(
                        logger,
                        logging.DEBUG,
                        "wait_selector_timeout",
                        url=url,
                        selector=wait_for,
                    )
            html = self._page.content()
        except PWTimeout as exc:
            raise TransientNetworkError(f"Navigation timed out: {url}") from exc
        except PWError as exc:
            if is_session_lost(exc):
                raise SessionLostError(str(exc)) from exc
            raise TransientNetworkError(f"Navigation failed: {url}: {exc}") from exc

        status = response.status if response is not None else None
        marker = HTMLParsingLayer.contains_marker(html=html, markers=self._settings.block_markers)
        if marker is not None:
            raise AccessDeniedError(f"Block page served ({marker}): {url}", status_code=status)

        self._html = html
        return status

    def extract(self, field_selectors: Sequence[FieldSelector]) -> dict[str, Any]:
        return HTMLParsingLayer.extract_fields(soup=self._document(), selectors=field_selectors)

    def list_links(self, selector: str) -> set[str]:
        return HTMLParsingLayer.extract_links(soup=self._document(), selector=selector)

    def page_count(self, selector: str) -> int | None:
        return HTMLParsingLayer.extract_page_count(soup=self._document(), selector=selector)

    def screenshot(self) -> bytes | None:
        try:
            return self._page.screenshot(full_page=False)
        except PWError as exc:
            log_event(logger, logging.WARNING, "screenshot_failed", error=str(exc))
            return None

    def close(self) -> None:
        try:
            self._context.close()
            self._browser.close()
        except PWError as exc:
            log_event(logger, logging.DEBUG, "browser_close_failed", error=str(exc))
        finally:
            self._playwright.stop()

    def _document(self) -> BeautifulSoup:
        if self._html is None:
            raise RuntimeError("No page loaded; call navigate() first.")
        if self._soup is None:
            self._soup = HTMLParsingLayer.parse(self._html)
        return self._soup


class PlaywrightFetcherFactory:
    """
    Callable factory creating one browser session per call.
    """

    def __init__(self, *, settings: BrowserSettings) -> None:
        self._settings = settings

    def __call__(self) -> PageFetcher:
        return PlaywrightPageFetcher(settings=self._settings)
