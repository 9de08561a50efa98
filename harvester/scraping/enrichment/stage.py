"""
Sequential contact-number enrichment for extracted listings.

Each record runs a bounded attempt loop:

    Pending -> Requesting -> Success | RateLimited | Unauthorized | Failed

Rate-limit hits, unauthorized retries and generic failures each have their
own budget of `max_retries` attempts per record, so a record is requested at
most `3 * max_retries` times before it is recorded as failed.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone

from harvester.config import EnrichmentSettings
from harvester.domain.harvest import (
    LISTINGS,
    Credential,
    EnrichmentSummary,
    PhoneResult,
    Target,
    record_key,
)
from harvester.scraping.backoff import exponential_backoff, linear_backoff
from harvester.scraping.credentials import CredentialStore
from harvester.scraping.enrichment.client import LeadApiClient, LeadResult
from harvester.scraping.errors import (
    CredentialRefreshError,
    IdentityRotationError,
    LeadRequestError,
    RateLimitedError,
    UnauthorizedError,
)
from harvester.scraping.identity import IdentityRotator
from harvester.scraping.logging_utils import log_event
from harvester.scraping.run_context import RunContext
from harvester.scraping.storage import DocumentStore

logger = logging.getLogger(__name__)


class RecordOutcome:
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"
    STOPPED = "stopped"


@dataclass
class RecordAttempts:
    """
    Retry bookkeeping for one record.
    """

    generic_failures: int = 0
    rate_limit_hits: int = 0
    consecutive_rate_limits: int = 0
    unauthorized_retries: int = 0


class EnrichmentStage:
    """
    Walk pending listing records of a target one by one and fetch their
    advertiser numbers, escalating from retry to identity rotation to
    credential refresh.
    """

    def __init__(
        self,
        *,
        store: DocumentStore,
        client: LeadApiClient,
        identity: IdentityRotator,
        credentials: CredentialStore,
        settings: EnrichmentSettings,
        context: RunContext,
    ) -> None:
        self._store = store
        self._client = client
        self._identity = identity
        self._credentials = credentials
        self._settings = settings
        self._context = context
        self._credential = Credential()
        self._reset_counters()

    def run(self, target: Target) -> EnrichmentSummary:
        self._reset_counters()
        try:
            self._identity.ensure_active()
        except IdentityRotationError as exc:
            log_event(logger, logging.WARNING, "identity_ensure_failed", error=str(exc))

        self._credential = self._credentials.load()
        if not self._credential.is_complete:
            self._refresh_credentials(reason="missing")

        log_event(
            logger,
            logging.INFO,
            "enrichment_started",
            target=target.name,
            identity=self._identity.current_identity(),
        )

        halted = False
        after: str | None = None
        while self._context.keep_running and not halted:
            batch = self._store.find_batch(
                LISTINGS,
                filters={"target_name": target.name, "phone_numbers__isnull": True},
                limit=self._settings.batch_size,
                after=after,
            )
            if not batch:
                break
            after = batch[-1]["url"]

            for record in batch:
                if not self._context.keep_running:
                    break
                if self._rotate_counter >= self._settings.rotate_every:
                    self._rotate(reason="periodic")
                    self._rotate_counter = 0
                    self._context.pause(self._settings.post_rotation_delay_seconds)

                outcome = self._process_record(target, record["url"])
                if outcome == RecordOutcome.STOPPED:
                    break
                if outcome == RecordOutcome.SKIPPED:
                    self._skipped += 1
                    continue

                self._processed += 1
                self._rotate_counter += 1
                if outcome == RecordOutcome.SUCCESS:
                    self._succeeded += 1
                else:
                    self._failed += 1
                interval = self._settings.progress_notification_interval
                if interval > 0 and self._processed % interval == 0:
                    self._context.notify(
                        f"{target.name}: {self._processed} listings enriched "
                        f"({self._succeeded} with numbers)."
                    )

                if self._unauthorized_total > self._settings.unauthorized_halt_threshold:
                    halted = True
                    log_event(
                        logger,
                        logging.ERROR,
                        "enrichment_halted",
                        target=target.name,
                        unauthorized=self._unauthorized_total,
                    )
                    self._context.notify(
                        f"Enrichment halted for {target.name}: "
                        f"{self._unauthorized_total} unauthorized responses."
                    )
                    break
                self._context.pause(self._settings.delay_between_seconds)

        summary = EnrichmentSummary(
            target=target.name,
            processed=self._processed,
            succeeded=self._succeeded,
            failed=self._failed,
            skipped=self._skipped,
            rate_limited=self._rate_limited,
            unauthorized=self._unauthorized_total,
            rotations=self._rotations,
            refreshes=self._refreshes,
            whatsapp_succeeded=self._whatsapp_succeeded,
            halted=halted,
        )
        log_event(logger, logging.INFO, "enrichment_completed", **asdict(summary))
        return summary

    def _process_record(self, target: Target, url: str) -> str:
        listing_id = self._client.listing_id(url)
        if listing_id is None:
            log_event(logger, logging.WARNING, "listing_id_missing", target=target.name, url=url)
            return RecordOutcome.SKIPPED

        key = record_key(target.name, url)
        attempts = RecordAttempts()
        max_retries = self._settings.max_retries
        while True:
            if not self._context.keep_running:
                return RecordOutcome.STOPPED
            try:
                result = self._client.request_lead(listing_id, self._credential)
            except RateLimitedError as exc:
                attempts.rate_limit_hits += 1
                attempts.consecutive_rate_limits += 1
                self._rate_limited += 1
                log_event(
                    logger,
                    logging.WARNING,
                    "lead_rate_limited",
                    listing_id=listing_id,
                    hits=attempts.rate_limit_hits,
                )
                if attempts.rate_limit_hits >= max_retries:
                    self._persist_failure(key, exc)
                    return RecordOutcome.FAILED
                self._rotate(reason="rate_limited")
                self._rotate_counter = 0
                if attempts.consecutive_rate_limits >= 2:
                    self._refresh_credentials(reason="rate_limited")
                self._context.pause(
                    exponential_backoff(
                        attempts.rate_limit_hits,
                        base_seconds=self._settings.rate_limit_backoff_seconds,
                        multiplier=self._settings.rate_limit_backoff_multiplier,
                        cap_seconds=self._settings.rate_limit_backoff_cap_seconds,
                        jitter_seconds=self._settings.rate_limit_jitter_seconds,
                        rng=self._context.rng,
                    )
                )
                continue
            except UnauthorizedError as exc:
                attempts.consecutive_rate_limits = 0
                attempts.unauthorized_retries += 1
                self._unauthorized_total += 1
                log_event(
                    logger,
                    logging.WARNING,
                    "lead_unauthorized",
                    listing_id=listing_id,
                    retries=attempts.unauthorized_retries,
                    stage_total=self._unauthorized_total,
                )
                if (
                    attempts.unauthorized_retries >= max_retries
                    or self._unauthorized_total > self._settings.unauthorized_halt_threshold
                ):
                    self._persist_failure(key, exc)
                    return RecordOutcome.FAILED
                self._rotate(reason="unauthorized")
                self._refresh_credentials(reason="unauthorized")
                continue
            except LeadRequestError as exc:
                attempts.consecutive_rate_limits = 0
                attempts.generic_failures += 1
                log_event(
                    logger,
                    logging.WARNING,
                    "lead_request_failed",
                    listing_id=listing_id,
                    attempt=attempts.generic_failures,
                    error=str(exc),
                )
                if attempts.generic_failures >= max_retries:
                    self._persist_failure(key, exc)
                    return RecordOutcome.FAILED
                self._context.pause(
                    linear_backoff(
                        attempts.generic_failures,
                        base_seconds=self._settings.retry_base_delay_seconds,
                    )
                )
                continue

            self._persist_success(key, result)
            log_event(
                logger,
                logging.INFO,
                "lead_phones_saved",
                listing_id=listing_id,
                phones=len(result.phones),
            )
            if self._settings.whatsapp_enabled:
                self._fetch_whatsapp(key, listing_id)
            return RecordOutcome.SUCCESS

    def _fetch_whatsapp(self, key: dict[str, str], listing_id: str) -> None:
        try:
            result = self._client.request_lead(listing_id, self._credential, whatsapp=True)
        except LeadRequestError as exc:
            log_event(
                logger,
                logging.INFO,
                "whatsapp_lead_failed",
                listing_id=listing_id,
                error=str(exc),
            )
            return
        self._store.update(
            LISTINGS,
            key=key,
            fields={
                "whatsapp_numbers": result.phones,
                "whatsapp_lead_id": result.lead_id,
                "whatsapp_updated_at": datetime.now(timezone.utc),
            },
        )
        self._whatsapp_succeeded += 1

    def _persist_success(self, key: dict[str, str], result: LeadResult) -> None:
        self._store.update(
            LISTINGS,
            key=key,
            fields={
                "phone_numbers": result.phones,
                "lead_id": result.lead_id,
                "phone_error": None,
                "last_phone_result": PhoneResult.OK,
                "phone_updated_at": datetime.now(timezone.utc),
            },
        )

    def _persist_failure(self, key: dict[str, str], exc: Exception) -> None:
        log_event(logger, logging.ERROR, "lead_failed", url=key["url"], error=str(exc))
        self._store.update(
            LISTINGS,
            key=key,
            fields={
                "phone_error": str(exc)[:2000],
                "last_phone_result": PhoneResult.ERROR,
                "phone_updated_at": datetime.now(timezone.utc),
            },
        )

    def _rotate(self, *, reason: str) -> None:
        self._rotations += 1
        try:
            self._identity.rotate()
        except IdentityRotationError as exc:
            log_event(logger, logging.WARNING, "identity_rotation_failed", reason=reason, error=str(exc))
            return
        log_event(logger, logging.INFO, "identity_rotation", reason=reason)

    def _refresh_credentials(self, *, reason: str) -> None:
        self._refreshes += 1
        try:
            self._credential = self._credentials.refresh()
        except CredentialRefreshError as exc:
            log_event(logger, logging.WARNING, "credential_refresh_failed", reason=reason, error=str(exc))
            self._context.notify(f"Credential refresh failed ({reason}): {exc}")
            return
        log_event(logger, logging.INFO, "credential_refresh", reason=reason)

    def _reset_counters(self) -> None:
        self._rotate_counter = 0
        self._unauthorized_total = 0
        self._processed = 0
        self._succeeded = 0
        self._failed = 0
        self._skipped = 0
        self._rate_limited = 0
        self._rotations = 0
        self._refreshes = 0
        self._whatsapp_succeeded = 0
