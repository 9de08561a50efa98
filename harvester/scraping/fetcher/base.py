"""
Page fetcher abstraction.

One `PageFetcher` instance is one browser session. It is created, used and
closed by a single thread.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from typing import Any

from harvester.domain.harvest import FieldSelector


class PageFetcher(ABC):
    @abstractmethod
    def navigate(self, url: str, *, timeout: float, wait_for: str | None = None) -> int | None:
        """
        Load `url` and return the main response status (None when unknown).

        When `wait_for` is given the page is given a bounded chance to render
        an element matching it before the document is captured.

        Raises TransientNetworkError on timeout, SessionLostError when the
        session died and AccessDeniedError when a block page is served.
        """

    @abstractmethod
    def extract(self, field_selectors: Sequence[FieldSelector]) -> dict[str, Any]:
        """
        Apply a field map to the current page.
        """

    @abstractmethod
    def list_links(self, selector: str) -> set[str]:
        """
        Raw `href` values of the elements matching `selector`.
        """

    @abstractmethod
    def page_count(self, selector: str) -> int | None:
        """
        Highest page number advertised by the pagination widget.
        """

    def screenshot(self) -> bytes | None:
        return None

    def close(self) -> None:
        return None


FetcherFactory = Callable[[], PageFetcher]
