"""
Authentication material for the lead API.

A credential is the site's cookie header plus the bearer `authorization`
header its own frontend sends. `refresh()` replaces both wholesale.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import urlparse

from playwright.sync_api import Error as PWError
from playwright.sync_api import Request
from playwright.sync_api import sync_playwright

from harvester.config import BrowserSettings, CredentialSettings, resolve_project_path
from harvester.domain.harvest import Credential
from harvester.scraping.errors import CredentialRefreshError
from harvester.scraping.fetcher.playwright_fetcher import LAUNCH_ARGS, load_cookie_file
from harvester.scraping.logging_utils import log_event

logger = logging.getLogger(__name__)


class CredentialStore(ABC):
    @abstractmethod
    def load(self) -> Credential:
        """
        Return the stored credential (possibly incomplete).
        """

    @abstractmethod
    def save(self, credential: Credential) -> None:
        """
        Persist a credential, replacing the previous one.
        """

    @abstractmethod
    def refresh(self) -> Credential:
        """
        Run the re-authentication flow, persist and return the new credential.
        """


class JsonFileCredentialStore(CredentialStore):
    """
    Credential kept in a small JSON auth file; refresh is delegated.
    """

    def __init__(
        self,
        *,
        path: str | Path,
        refresher: Callable[[], Credential],
    ) -> None:
        self._path = Path(path)
        self._refresher = refresher
        self._lock = threading.Lock()

    def load(self) -> Credential:
        with self._lock:
            if not self._path.exists():
                return Credential()
            text = self._path.read_text(encoding="utf-8")
        try:
            raw = json.loads(text or "{}")
        except ValueError as exc:
            log_event(
                logger,
                logging.WARNING,
                "credential_file_unreadable",
                auth_path=str(self._path),
                error=str(exc),
            )
            return Credential()
        if not isinstance(raw, dict):
            return Credential()
        refreshed_at = raw.get("refreshed_at")
        return Credential(
            cookie=raw.get("cookie") or None,
            authorization_token=raw.get("authorization") or None,
            refreshed_at=datetime.fromisoformat(refreshed_at) if refreshed_at else None,
        )

    def save(self, credential: Credential) -> None:
        payload = {
            "cookie": credential.cookie or "",
            "authorization": credential.authorization_token or "",
            "refreshed_at": credential.refreshed_at.isoformat() if credential.refreshed_at else None,
        }
        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    def refresh(self) -> Credential:
        credential = self._refresher()
        if not credential.is_complete:
            raise CredentialRefreshError("Re-authentication returned an incomplete credential.")
        self.save(credential)
        log_event(logger, logging.INFO, "credential_refreshed", auth_path=str(self._path))
        return credential


class BrowserCredentialRefresher:
    """
    Open the site in a headless browser with the stored cookies and capture
    the cookie header plus the `authorization` header of the site's own API
    calls.
    """

    def __init__(
        self,
        *,
        settings: CredentialSettings,
        browser_settings: BrowserSettings,
    ) -> None:
        self._settings = settings
        self._browser_settings = browser_settings

    def __call__(self) -> Credential:
        captured: dict[str, str] = {}

        def _on_request(request: Request) -> None:
            if self._settings.api_url_fragment not in request.url:
                return
            token = request.headers.get("authorization")
            if token and "authorization" not in captured:
                captured["authorization"] = token

        domain = urlparse(self._settings.login_url).hostname or ""
        deadline = time.monotonic() + self._settings.capture_timeout_seconds
        with sync_playwright() as playwright:
            try:
                browser = playwright.chromium.launch(
                    headless=self._browser_settings.headless,
                    args=LAUNCH_ARGS,
                )
                context = browser.new_context(user_agent=self._browser_settings.user_agents[0])
                cookies = load_cookie_file(self._browser_settings.cookies_path)
                if cookies:
                    context.add_cookies(cookies)
                page = context.new_page()
                page.on("request", _on_request)
                page.goto(
                    self._settings.login_url,
                    wait_until="networkidle",
                    timeout=self._browser_settings.navigation_timeout_seconds * 1000,
                )
                while "authorization" not in captured and time.monotonic() < deadline:
                    page.wait_for_timeout(500)

                browser_cookies = context.cookies()
                self._save_cookies(browser_cookies)
                browser.close()
            except PWError as exc:
                raise CredentialRefreshError(f"Browser re-authentication failed: {exc}") from exc
            except (OSError, ValueError) as exc:
                raise CredentialRefreshError(f"Browser cookie file unusable: {exc}") from exc

        cookie_header = "; ".join(
            f"{cookie['name']}={cookie['value']}"
            for cookie in browser_cookies
            if domain.endswith(str(cookie.get("domain", "")).lstrip("."))
        )
        if "authorization" not in captured:
            raise CredentialRefreshError("No authorization header observed before timeout.")
        return Credential(
            cookie=cookie_header or None,
            authorization_token=captured["authorization"],
            refreshed_at=datetime.now(timezone.utc),
        )

    def _save_cookies(self, cookies: list) -> None:
        path = resolve_project_path(self._browser_settings.cookies_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(cookies, indent=2), encoding="utf-8")
