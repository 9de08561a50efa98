"""
Concurrent detail-page extraction.

Each cycle reads one batch of unscraped candidates, sizes a worker pool from
host resources and lets every worker claim URLs from a shared cursor, so no
URL is processed twice within a cycle. Every worker owns one browser session.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone

from harvester.config import BrowserSettings, PoolSettings
from harvester.domain.harvest import (
    CANDIDATES,
    LISTINGS,
    CandidateState,
    ExtractionSummary,
    Target,
    record_key,
)
from harvester.scraping.concurrency import ClaimCursor, PsutilResourceProbe, ResourceProbe, compute_pool_size
from harvester.scraping.errors import (
    ExtractionError,
    FatalInfrastructureError,
    HarvestError,
    SessionLostError,
)
from harvester.scraping.fetcher import FetcherFactory, PageFetcher
from harvester.scraping.logging_utils import log_event
from harvester.scraping.run_context import RunContext
from harvester.scraping.storage import DocumentStore

logger = logging.getLogger(__name__)


@dataclass
class CycleResult:
    workers: int = 0
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    session_restarts: int = 0


class ExtractionPool:
    """
    Drain a target's candidate queue with a bounded pool of browser sessions.
    """

    def __init__(
        self,
        *,
        store: DocumentStore,
        fetcher_factory: FetcherFactory,
        settings: PoolSettings,
        browser_settings: BrowserSettings,
        context: RunContext,
        resource_probe: ResourceProbe | None = None,
    ) -> None:
        self._store = store
        self._fetcher_factory = fetcher_factory
        self._settings = settings
        self._browser_settings = browser_settings
        self._context = context
        self._probe = resource_probe or PsutilResourceProbe()
        self._lock = threading.Lock()

    def drain(self, target: Target) -> ExtractionSummary:
        cycles = 0
        totals = CycleResult()
        workers_per_cycle: list[int] = []
        after: str | None = None

        log_event(logger, logging.INFO, "extraction_started", target=target.name)
        while self._context.keep_running:
            batch = self._store.find_batch(
                CANDIDATES,
                filters={"target_name": target.name, "state__ne": CandidateState.SCRAPED},
                limit=self._settings.batch_size,
                after=after,
            )
            if not batch:
                break
            after = batch[-1]["url"]

            result = self.run_cycle(target, [row["url"] for row in batch])
            cycles += 1
            workers_per_cycle.append(result.workers)
            totals.processed += result.processed
            totals.succeeded += result.succeeded
            totals.failed += result.failed
            totals.session_restarts += result.session_restarts
            self._check_memory_pressure()

        summary = ExtractionSummary(
            target=target.name,
            cycles=cycles,
            processed=totals.processed,
            succeeded=totals.succeeded,
            failed=totals.failed,
            session_restarts=totals.session_restarts,
            workers_per_cycle=workers_per_cycle,
        )
        log_event(
            logger,
            logging.INFO,
            "extraction_completed",
            target=target.name,
            cycles=cycles,
            processed=totals.processed,
            succeeded=totals.succeeded,
            failed=totals.failed,
            session_restarts=totals.session_restarts,
        )
        return summary

    def pool_size(self, batch_size: int) -> int:
        size = compute_pool_size(
            available_memory_bytes=self._probe.available_memory_bytes(),
            per_session_memory_mb=self._settings.per_session_memory_mb,
            cpu_count=self._probe.cpu_count(),
            cpu_multiplier=self._settings.cpu_multiplier,
            cap=self._context.pool_cap,
            floor=self._settings.min_concurrency,
        )
        return max(1, min(size, batch_size))

    def run_cycle(self, target: Target, urls: list[str]) -> CycleResult:
        """
        Process one batch of URLs. A fatal error in any worker stops the
        others from claiming and is re-raised once all workers have exited.
        """

        result = CycleResult()
        if not urls:
            return result

        cursor: ClaimCursor[str] = ClaimCursor(urls)
        abort = threading.Event()
        result.workers = self.pool_size(len(urls))
        log_event(
            logger,
            logging.INFO,
            "extraction_cycle_started",
            target=target.name,
            urls=len(urls),
            workers=result.workers,
        )

        with ThreadPoolExecutor(
            max_workers=result.workers,
            thread_name_prefix=f"extract-{target.name}",
        ) as executor:
            futures = [
                executor.submit(self._worker, target, cursor, abort, result)
                for _ in range(result.workers)
            ]
            errors: list[BaseException] = []
            for future in futures:
                exc = future.exception()
                if exc is not None:
                    errors.append(exc)

        if errors:
            raise errors[0]
        return result

    def _worker(
        self,
        target: Target,
        cursor: ClaimCursor[str],
        abort: threading.Event,
        result: CycleResult,
    ) -> None:
        fetcher: PageFetcher | None = None
        try:
            fetcher = self._open_session()
            while self._context.keep_running and not abort.is_set():
                url = cursor.claim()
                if url is None:
                    break
                try:
                    self._process(target, fetcher, url)
                except SessionLostError as exc:
                    self._record_failure(target, fetcher, url, exc, result)
                    self._close_session(fetcher)
                    fetcher = None
                    fetcher = self._open_session()
                    with self._lock:
                        result.session_restarts += 1
                    log_event(logger, logging.WARNING, "extraction_session_restarted", target=target.name)
                except FatalInfrastructureError:
                    raise
                except HarvestError as exc:
                    self._record_failure(target, fetcher, url, exc, result)
                else:
                    self._record_success(target, url, result)
                self._context.pause(self._settings.item_delay_seconds)
        except BaseException:
            abort.set()
            raise
        finally:
            if fetcher is not None:
                self._close_session(fetcher)

    def _process(self, target: Target, fetcher: PageFetcher, url: str) -> None:
        status = fetcher.navigate(
            url,
            timeout=self._browser_settings.navigation_timeout_seconds,
            wait_for=target.profile.ready_selector,
        )
        if status is not None and status >= 400:
            raise ExtractionError(f"HTTP {status} for {url}")

        details = fetcher.extract(target.profile.fields)
        missing = [name for name in target.profile.required_fields if not details.get(name)]
        if missing:
            raise ExtractionError(f"Missing required fields {missing} for {url}")

        now = datetime.now(timezone.utc)
        key = record_key(target.name, url)
        self._store.upsert(
            LISTINGS,
            key=key,
            set_on_insert={
                "created_at": now,
                "phone_numbers": None,
                "whatsapp_numbers": None,
            },
            always_set={
                "details": details,
                "last_result": "ok",
                "last_scraped_at": now,
            },
        )
        self._store.update(
            CANDIDATES,
            key=key,
            fields={
                "state": CandidateState.SCRAPED,
                "scraped_at": now,
                "error": None,
                "failed_at": None,
            },
        )

    def _record_success(self, target: Target, url: str, result: CycleResult) -> None:
        with self._lock:
            result.processed += 1
            result.succeeded += 1
        done = self._context.increment("extraction_processed")
        log_event(logger, logging.DEBUG, "extraction_item_done", target=target.name, url=url)
        interval = self._settings.progress_notification_interval
        if interval > 0 and done % interval == 0:
            self._context.notify(f"{target.name}: {done} listings extracted so far.")

    def _record_failure(
        self,
        target: Target,
        fetcher: PageFetcher | None,
        url: str,
        exc: Exception,
        result: CycleResult,
    ) -> None:
        with self._lock:
            result.processed += 1
            result.failed += 1
        self._context.increment("extraction_processed")
        failures = self._context.increment("extraction_failed")
        log_event(
            logger,
            logging.WARNING,
            "extraction_item_failed",
            target=target.name,
            url=url,
            error=str(exc),
        )
        self._store.update(
            CANDIDATES,
            key=record_key(target.name, url),
            fields={
                "state": CandidateState.FAILED,
                "error": str(exc)[:2000],
                "failed_at": datetime.now(timezone.utc),
            },
        )
        every = self._settings.failure_screenshot_every
        if fetcher is not None and every > 0 and failures % every == 0:
            image = fetcher.screenshot()
            if image:
                self._context.notify_with_image(image, f"{target.name}: failure #{failures} at {url}")

    def _open_session(self) -> PageFetcher:
        try:
            return self._fetcher_factory()
        except HarvestError as exc:
            raise FatalInfrastructureError(f"Could not start browser session: {exc}") from exc

    def _close_session(self, fetcher: PageFetcher) -> None:
        try:
            fetcher.close()
        except Exception as exc:
            log_event(logger, logging.DEBUG, "extraction_session_close_failed", error=str(exc))

    def _check_memory_pressure(self) -> None:
        percent = self._probe.memory_percent()
        if percent < self._settings.memory_pressure_percent:
            return
        cap = self._context.lower_pool_cap(floor=self._settings.min_concurrency)
        log_event(logger, logging.WARNING, "extraction_memory_pressure", memory_percent=percent, pool_cap=cap)

