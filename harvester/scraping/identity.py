"""
Egress identity rotation.

Rotation is a process-wide side effect, so only the sequential enrichment
stage drives it.
"""

from __future__ import annotations

import logging
import math
import subprocess
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

import requests

from harvester.config import IdentitySettings
from harvester.scraping.errors import IdentityRotationError
from harvester.scraping.logging_utils import log_event

logger = logging.getLogger(__name__)

UNKNOWN_IDENTITY = "unknown"


class IdentityRotator(ABC):
    @abstractmethod
    def rotate(self) -> None:
        """
        Change the outbound network identity; raises IdentityRotationError.
        """

    @abstractmethod
    def current_identity(self) -> str:
        """
        Diagnostic description of the current identity (e.g. public IP).
        """

    def ensure_active(self) -> None:
        return None


class StaticIdentityRotator(IdentityRotator):
    """
    Used when rotation is disabled: every rotation is a logged no-op.
    """

    def rotate(self) -> None:
        log_event(logger, logging.DEBUG, "identity_rotation_skipped", reason="disabled")

    def current_identity(self) -> str:
        return "static"


class WireGuardIdentityRotator(IdentityRotator):
    """
    Bounce a WireGuard interface with `wg-quick` to obtain a new egress address.
    """

    def __init__(
        self,
        *,
        settings: IdentitySettings,
        session: requests.Session | None = None,
        runner: Callable[..., Any] = subprocess.run,
        sleep: Callable[[float], Any] = time.sleep,
    ) -> None:
        self._settings = settings
        self._session = session or requests.Session()
        self._runner = runner
        self._sleep = sleep

    def ensure_active(self) -> None:
        interface = self._settings.interface
        try:
            self._run(["wg", "show", interface])
            return
        except IdentityRotationError:
            log_event(logger, logging.INFO, "identity_interface_down", interface=interface)
        self._run(["wg-quick", "up", interface])
        log_event(
            logger,
            logging.INFO,
            "identity_interface_up",
            interface=interface,
            identity=self.current_identity(),
        )

    def rotate(self) -> None:
        interface = self._settings.interface
        before = self.current_identity()
        try:
            self._run(["wg-quick", "down", interface])
        except IdentityRotationError as exc:
            log_event(logger, logging.WARNING, "identity_down_failed", interface=interface, error=str(exc))
        self._run(["wg-quick", "up", interface])
        self._sleep(self._settings.settle_seconds)
        after = self.current_identity()
        if self._settings.wait_for_change:
            after = self._wait_for_change(before, after)
        log_event(
            logger,
            logging.INFO,
            "identity_rotated",
            interface=interface,
            identity_before=before,
            identity_after=after,
        )

    def _wait_for_change(self, before: str, after: str) -> str:
        timeout = self._settings.change_timeout_seconds
        polls = max(1, math.ceil(timeout / self._settings.change_poll_seconds))
        for _ in range(polls):
            if after != UNKNOWN_IDENTITY and after != before:
                return after
            self._sleep(self._settings.change_poll_seconds)
            after = self.current_identity()
        if after == UNKNOWN_IDENTITY or after == before:
            log_event(
                logger,
                logging.WARNING,
                "identity_unchanged",
                interface=self._settings.interface,
                identity=after,
                timeout_seconds=timeout,
            )
        return after

    def current_identity(self) -> str:
        try:
            response = self._session.get(
                self._settings.ip_echo_url,
                timeout=self._settings.ip_echo_timeout_seconds,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            log_event(logger, logging.DEBUG, "identity_lookup_failed", error=str(exc))
            return UNKNOWN_IDENTITY
        return response.text.strip() or UNKNOWN_IDENTITY

    def _run(self, command: list[str]) -> None:
        try:
            self._runner(
                command,
                check=True,
                capture_output=True,
                text=True,
                timeout=self._settings.command_timeout_seconds,
            )
        except subprocess.CalledProcessError as exc:
            stderr = (exc.stderr or "").strip()
            raise IdentityRotationError(
                f"{' '.join(command)} exited {exc.returncode}: {stderr[:300]}"
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise IdentityRotationError(f"{' '.join(command)} timed out") from exc
        except OSError as exc:
            raise IdentityRotationError(f"{' '.join(command)} could not start: {exc}") from exc


def build_identity_rotator(
    settings: IdentitySettings,
    *,
    sleep: Callable[[float], Any] = time.sleep,
) -> IdentityRotator:
    if settings.enabled:
        return WireGuardIdentityRotator(settings=settings, sleep=sleep)
    return StaticIdentityRotator()
