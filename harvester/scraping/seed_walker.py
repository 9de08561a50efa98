"""
Resumable paginated discovery of listing URLs.

    Start -> Fetching(p) -> Parsed -> Continue(p + 1)
                                   -> Stop(empty_page | reached_limit | blocked | stopped)

One browser session per target, pages strictly in order. `last_page` in the
checkpoint advances only after a page's links are persisted.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

from harvester.config import BrowserSettings, SeedSettings
from harvester.domain.harvest import (
    CANDIDATES,
    CandidateState,
    SeedRunSummary,
    StopReason,
    Target,
    checkpoint_key,
    record_key,
)
from harvester.scraping.checkpoints import CheckpointStore
from harvester.scraping.errors import AccessDeniedError, SessionLostError, TransientNetworkError
from harvester.scraping.fetcher import FetcherFactory, PageFetcher
from harvester.scraping.logging_utils import log_event
from harvester.scraping.run_context import RunContext
from harvester.scraping.storage import DocumentStore

logger = logging.getLogger(__name__)

ACCESS_DENIED_STATUSES = {401, 403, 429}
SEED_STAGE = "seed"


def build_page_url(seed_url: str, page: int, *, page_param: str = "page") -> str:
    """
    Return `seed_url` with its page query parameter set to `page`.
    """

    parts = urlsplit(seed_url)
    query = [(name, value) for name, value in parse_qsl(parts.query, keep_blank_values=True) if name != page_param]
    query.append((page_param, str(page)))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


class _PageSkipped(Exception):
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class SeedWalker:
    """
    Walk a target's result pages and persist every unseen listing link.
    """

    def __init__(
        self,
        *,
        store: DocumentStore,
        checkpoints: CheckpointStore,
        fetcher_factory: FetcherFactory,
        settings: SeedSettings,
        browser_settings: BrowserSettings,
        context: RunContext,
    ) -> None:
        self._store = store
        self._checkpoints = checkpoints
        self._fetcher_factory = fetcher_factory
        self._settings = settings
        self._browser_settings = browser_settings
        self._context = context
        self._fetcher: PageFetcher | None = None

    def resolve_start_page(self, target: Target) -> int:
        if self._settings.resume_policy != "resume":
            return target.start_page
        checkpoint = self._checkpoints.load(checkpoint_key(target.name, SEED_STAGE))
        if checkpoint is None or checkpoint.last_page is None:
            return target.start_page
        return max(target.start_page, checkpoint.last_page + 1)

    def walk(self, target: Target) -> SeedRunSummary:
        key = checkpoint_key(target.name, SEED_STAGE)
        start_page = self.resolve_start_page(target)
        end_page = target.page_limit
        probe_pending = end_page is None and self._settings.probe_page_count
        seen: set[str] = set()

        page = start_page
        pages_processed = 0
        pages_skipped = 0
        consecutive_skips = 0
        links_found = 0
        links_new = 0
        last_page: int | None = None
        stop_reason = StopReason.STOPPED

        log_event(
            logger,
            logging.INFO,
            "seed_started",
            target=target.name,
            start_page=start_page,
            end_page=end_page,
        )
        try:
            while True:
                if not self._context.keep_running:
                    stop_reason = StopReason.STOPPED
                    break
                if end_page is not None and page > end_page:
                    stop_reason = StopReason.REACHED_LIMIT
                    break

                try:
                    links = self._fetch_links(target, page)
                except _PageSkipped as skipped:
                    pages_skipped += 1
                    consecutive_skips += 1
                    self._checkpoints.record(key, last_page_tried=page)
                    log_event(
                        logger,
                        logging.WARNING,
                        "seed_page_skipped",
                        target=target.name,
                        page=page,
                        reason=skipped.reason,
                    )
                    if consecutive_skips >= self._settings.max_consecutive_page_failures:
                        stop_reason = StopReason.BLOCKED
                        self._context.notify(
                            f"Discovery for {target.name} stopped: "
                            f"{consecutive_skips} consecutive pages skipped (last {page})."
                        )
                        break
                    page += 1
                    self._context.pause_between(
                        self._settings.pacing_min_seconds, self._settings.pacing_max_seconds
                    )
                    continue

                consecutive_skips = 0
                pages_processed += 1
                links_found += len(links)

                if probe_pending:
                    probe_pending = False
                    end_page = self._probe_end_page(target, page)

                unseen = sorted(links - seen)
                if not unseen:
                    stop_reason = StopReason.EMPTY_PAGE
                    log_event(logger, logging.INFO, "seed_no_new_links", target=target.name, page=page)
                    break

                inserted = 0
                for url in unseen:
                    inserted += self._store.upsert(
                        CANDIDATES,
                        key=record_key(target.name, url),
                        set_on_insert={"state": CandidateState.NEW},
                        always_set={},
                    )
                links_new += inserted
                seen.update(unseen)
                checkpoint = self._checkpoints.record(key, last_page_tried=page, last_page=page)
                last_page = checkpoint.last_page
                log_event(
                    logger,
                    logging.INFO,
                    "seed_page_done",
                    target=target.name,
                    page=page,
                    links=len(links),
                    unseen_links=len(unseen),
                    new_links=inserted,
                )

                page += 1
                self._context.pause_between(
                    self._settings.pacing_min_seconds, self._settings.pacing_max_seconds
                )
        finally:
            self._close_fetcher()

        summary = SeedRunSummary(
            target=target.name,
            start_page=start_page,
            end_page=end_page,
            pages_processed=pages_processed,
            pages_skipped=pages_skipped,
            links_found=links_found,
            links_new=links_new,
            stop_reason=stop_reason,
            last_page=last_page,
        )
        log_event(
            logger,
            logging.INFO,
            "seed_completed",
            target=target.name,
            pages_processed=pages_processed,
            pages_skipped=pages_skipped,
            links_new=links_new,
            stop_reason=stop_reason,
            last_page=last_page,
        )
        return summary

    def _fetch_links(self, target: Target, page: int) -> set[str]:
        """
        Navigate to one result page (one retry on transient failure) and
        return its absolutised listing links. Raises `_PageSkipped`.
        """

        url = build_page_url(target.seed_url, page, page_param=self._settings.page_param)
        last_error = ""
        for attempt in range(2):
            if attempt > 0 and not self._context.pause(self._settings.navigation_retry_delay_seconds):
                raise _PageSkipped("stopped")
            fetcher = self._session()
            try:
                status = fetcher.navigate(
                    url,
                    timeout=self._browser_settings.navigation_timeout_seconds,
                    wait_for=target.profile.listing_selector,
                )
            except AccessDeniedError as exc:
                self._report_blocked(target, page, url, exc.status_code)
                raise _PageSkipped(f"access denied: {exc}") from exc
            except SessionLostError as exc:
                last_error = f"session lost: {exc}"
                self._close_fetcher()
                continue
            except TransientNetworkError as exc:
                last_error = str(exc)
                continue

            if status in ACCESS_DENIED_STATUSES:
                self._report_blocked(target, page, url, status)
                raise _PageSkipped(f"access denied: HTTP {status}")
            if status is not None and status >= 400:
                last_error = f"HTTP {status}"
                continue

            raw_links = fetcher.list_links(target.profile.listing_selector)
            base_url = f"{target.profile.base_url.rstrip('/')}/"
            return {urljoin(base_url, link) for link in raw_links}

        raise _PageSkipped(f"navigation failed after retry: {last_error}")

    def _probe_end_page(self, target: Target, page: int) -> int | None:
        selector = target.profile.pagination_selector
        if not selector or self._fetcher is None:
            return None
        page_count = self._fetcher.page_count(selector)
        if page_count is None or page_count < page:
            return None
        log_event(logger, logging.INFO, "seed_page_count_probed", target=target.name, end_page=page_count)
        return page_count

    def _report_blocked(self, target: Target, page: int, url: str, status: int | None) -> None:
        log_event(
            logger,
            logging.WARNING,
            "seed_page_blocked",
            target=target.name,
            page=page,
            url=url,
            status_code=status,
        )
        self._context.notify(
            f"Access denied on {target.name} page {page} (status {status}); skipping."
        )
        image = self._fetcher.screenshot() if self._fetcher is not None else None
        if image:
            self._context.notify_with_image(
                image,
                f"{target.name} page {page} blocked at {datetime.now(timezone.utc).isoformat()}",
            )

    def _session(self) -> PageFetcher:
        if self._fetcher is None:
            self._fetcher = self._fetcher_factory()
        return self._fetcher

    def _close_fetcher(self) -> None:
        if self._fetcher is None:
            return
        fetcher, self._fetcher = self._fetcher, None
        try:
            fetcher.close()
        except Exception as exc:
            log_event(logger, logging.DEBUG, "seed_session_close_failed", error=str(exc))
