"""
Run-wide state shared by every stage of a harvest run.

A `RunContext` replaces process globals: it carries the keep-running flag,
the notification sink, run counters and the extraction pool's soft cap.
"""

from __future__ import annotations

import logging
import os
import random
import signal
import threading
from collections import Counter
from datetime import datetime, timezone
from types import FrameType

from harvester.scraping.logging_utils import log_event
from harvester.scraping.notifications import LoggingNotificationSink, NotificationSink

logger = logging.getLogger(__name__)


class RunContext:
    def __init__(
        self,
        *,
        notifier: NotificationSink | None = None,
        pool_cap: int = 8,
        rng: random.Random | None = None,
    ) -> None:
        self.notifier = notifier or LoggingNotificationSink()
        self.started_at = datetime.now(timezone.utc)
        self.rng = rng or random.Random()
        self._stop_event = threading.Event()
        self._lock = threading.Lock()
        self._counters: Counter[str] = Counter()
        self._pool_cap = pool_cap
        self.stop_reason: str | None = None

    @property
    def keep_running(self) -> bool:
        return not self._stop_event.is_set()

    def request_stop(self, reason: str) -> None:
        with self._lock:
            if self._stop_event.is_set():
                return
            self.stop_reason = reason
            self._stop_event.set()
        log_event(logger, logging.WARNING, "run_stop_requested", reason=reason)

    def pause(self, seconds: float) -> bool:
        """
        Sleep up to `seconds`, waking early on stop. Returns `keep_running`.
        """

        if seconds > 0:
            self._stop_event.wait(seconds)
        return self.keep_running

    def pause_between(self, min_seconds: float, max_seconds: float) -> bool:
        low = max(0.0, min_seconds)
        high = max(low, max_seconds)
        return self.pause(self.rng.uniform(low, high))

    def increment(self, name: str, amount: int = 1) -> int:
        with self._lock:
            self._counters[name] += amount
            return self._counters[name]

    def stats(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counters)

    @property
    def pool_cap(self) -> int:
        with self._lock:
            return self._pool_cap

    def lower_pool_cap(self, *, floor: int) -> int:
        """
        Lower the pool cap by one for the next cycle, never below `floor`.
        """

        with self._lock:
            self._pool_cap = max(floor, self._pool_cap - 1)
            return self._pool_cap

    def notify(self, text: str) -> None:
        try:
            self.notifier.notify(text)
        except Exception as exc:
            log_event(logger, logging.WARNING, "notify_failed", error=str(exc))

    def notify_with_image(self, image: bytes, caption: str) -> None:
        try:
            self.notifier.notify_with_image(image, caption)
        except Exception as exc:
            log_event(logger, logging.WARNING, "notify_image_failed", error=str(exc))


def install_signal_handlers(context: RunContext, *, grace_seconds: float) -> None:
    """
    Stop the run on SIGINT/SIGTERM and force exit once the grace window ends.

    Must be called from the main thread.
    """

    def _force_exit() -> None:
        log_event(logger, logging.ERROR, "shutdown_grace_expired", grace_seconds=grace_seconds)
        os._exit(130)

    def _handle(signum: int, _frame: FrameType | None) -> None:
        name = signal.Signals(signum).name
        if not context.keep_running:
            return
        context.request_stop(name)
        context.notify(f"Shutdown requested ({name}); finishing in-flight work.")
        timer = threading.Timer(grace_seconds, _force_exit)
        timer.daemon = True
        timer.start()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)
