"""
Operator notification sinks.

Notifications are one-way and best-effort: a sink never raises into the
pipeline and never makes a stage wait on the network.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import requests

from harvester.config import NotificationSettings
from harvester.scraping.logging_utils import log_event

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4000
MAX_CAPTION_LENGTH = 1000


class NotificationSink(ABC):
    @abstractmethod
    def notify(self, text: str) -> None:
        """
        Send a plain status message.
        """

    @abstractmethod
    def notify_with_image(self, image: bytes, caption: str) -> None:
        """
        Send an image (usually a page screenshot) with a caption.
        """

    def close(self) -> None:
        """
        Flush pending messages; the default sink has nothing to flush.
        """


class LoggingNotificationSink(NotificationSink):
    """
    Sink used when no chat channel is configured: messages go to the log only.
    """

    def notify(self, text: str) -> None:
        log_event(logger, logging.INFO, "notification", text=text)

    def notify_with_image(self, image: bytes, caption: str) -> None:
        log_event(
            logger,
            logging.INFO,
            "notification_image",
            caption=caption,
            image_bytes=len(image),
        )


class TelegramNotificationSink(NotificationSink):
    """
    Telegram Bot API sink dispatching on a single background thread.
    """

    def __init__(
        self,
        *,
        settings: NotificationSettings,
        session: requests.Session | None = None,
    ) -> None:
        if not settings.telegram_bot_token or not settings.telegram_chat_id:
            raise ValueError("Telegram sink requires both a bot token and a chat id.")
        self._settings = settings
        self._session = session or requests.Session()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="notify")
        self._closed = False

    def notify(self, text: str) -> None:
        payload = {
            "chat_id": self._settings.telegram_chat_id,
            "text": text[:MAX_MESSAGE_LENGTH],
        }
        if self._settings.parse_mode:
            payload["parse_mode"] = self._settings.parse_mode
        self._submit("sendMessage", data=payload)

    def notify_with_image(self, image: bytes, caption: str) -> None:
        payload = {
            "chat_id": self._settings.telegram_chat_id,
            "caption": caption[:MAX_CAPTION_LENGTH],
        }
        self._submit(
            "sendPhoto",
            data=payload,
            files={"photo": ("screenshot.png", image, "image/png")},
        )

    def close(self) -> None:
        self._closed = True
        self._executor.shutdown(wait=True)

    def _submit(self, method: str, **kwargs: Any) -> None:
        if self._closed:
            log_event(logger, logging.DEBUG, "notification_dropped", method=method)
            return
        try:
            self._executor.submit(self._post, method, **kwargs)
        except RuntimeError as exc:
            log_event(logger, logging.WARNING, "notification_dropped", method=method, error=str(exc))

    def _post(self, method: str, **kwargs: Any) -> None:
        url = f"{self._settings.api_base}/bot{self._settings.telegram_bot_token}/{method}"
        for attempt in range(self._settings.max_retries + 1):
            try:
                response = self._session.post(
                    url,
                    timeout=self._settings.timeout_seconds,
                    **kwargs,
                )
            except requests.RequestException as exc:
                log_event(
                    logger,
                    logging.WARNING,
                    "notification_request_error",
                    method=method,
                    attempt=attempt + 1,
                    error=str(exc),
                )
                time.sleep(1 + attempt)
                continue

            if response.status_code == 200:
                return
            if response.status_code == 429:
                time.sleep(self._retry_after(response, default=2**attempt))
                continue
            if 400 <= response.status_code < 500:
                log_event(
                    logger,
                    logging.WARNING,
                    "notification_rejected",
                    method=method,
                    status_code=response.status_code,
                    body=response.text[:200],
                )
                return
            log_event(
                logger,
                logging.WARNING,
                "notification_server_error",
                method=method,
                status_code=response.status_code,
                attempt=attempt + 1,
            )

        log_event(logger, logging.WARNING, "notification_gave_up", method=method)

    @staticmethod
    def _retry_after(response: requests.Response, *, default: float) -> float:
        try:
            body = response.json()
        except ValueError:
            body = {}
        parameters = body.get("parameters") if isinstance(body, dict) else None
        if isinstance(parameters, dict) and isinstance(parameters.get("retry_after"), (int, float)):
            return float(parameters["retry_after"])
        try:
            return float(response.headers.get("Retry-After", default))
        except (TypeError, ValueError):
            return float(default)


def build_notification_sink(settings: NotificationSettings) -> NotificationSink:
    if settings.telegram_bot_token and settings.telegram_chat_id:
        return TelegramNotificationSink(settings=settings)
    return LoggingNotificationSink()
