"""
Harvest engine: discovery, extraction and enrichment per target.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence

from harvester.config import STAGES, HarvestSettings
from harvester.domain.harvest import (
    EnrichmentSummary,
    ExtractionSummary,
    SeedRunSummary,
    StopReason,
    Target,
    TargetRunSummary,
    checkpoint_key,
)
from harvester.scraping.checkpoints import CheckpointStore
from harvester.scraping.credentials import CredentialStore
from harvester.scraping.enrichment import EnrichmentStage, LeadApiClient
from harvester.scraping.extraction_pool import ExtractionPool
from harvester.scraping.fetcher import FetcherFactory
from harvester.scraping.identity import IdentityRotator
from harvester.scraping.logging_utils import log_event
from harvester.scraping.run_context import RunContext
from harvester.scraping.seed_walker import SEED_STAGE, SeedWalker
from harvester.scraping.storage import DocumentStore

logger = logging.getLogger(__name__)


class HarvestEngine:
    """
    Runs the selected stages for each selected target, in order.

    A failing stage marks its target failed and skips the target's remaining
    stages; other targets still run.
    """

    def __init__(
        self,
        *,
        settings: HarvestSettings,
        store: DocumentStore,
        checkpoints: CheckpointStore,
        fetcher_factory_for: Callable[[Target], FetcherFactory],
        lead_client: LeadApiClient,
        identity: IdentityRotator,
        credentials: CredentialStore,
        context: RunContext,
    ) -> None:
        self._settings = settings
        self._store = store
        self._checkpoints = checkpoints
        self._fetcher_factory_for = fetcher_factory_for
        self._lead_client = lead_client
        self._identity = identity
        self._credentials = credentials
        self._context = context

    def run(
        self,
        *,
        targets: Sequence[Target],
        stages: Sequence[str] | None = None,
        reset_checkpoint: bool = False,
    ) -> list[TargetRunSummary]:
        selected_stages = self._select_stages(stages)
        if not targets:
            raise ValueError("No enabled targets matched the run criteria.")

        log_event(
            logger,
            logging.INFO,
            "harvest_run_started",
            targets=[target.name for target in targets],
            stages=list(selected_stages),
        )
        summaries: list[TargetRunSummary] = []
        for target in targets:
            if not self._context.keep_running:
                log_event(logger, logging.WARNING, "harvest_target_skipped", target=target.name)
                break
            summaries.append(
                self._run_target(target, selected_stages, reset_checkpoint=reset_checkpoint)
            )

        self._context.notify(self._format_report(summaries))
        log_event(
            logger,
            logging.INFO,
            "harvest_run_completed",
            targets=len(summaries),
            statuses={summary.target: summary.status for summary in summaries},
            stop_reason=self._context.stop_reason,
        )
        return summaries

    def _run_target(
        self,
        target: Target,
        stages: tuple[str, ...],
        *,
        reset_checkpoint: bool = False,
    ) -> TargetRunSummary:
        seed: SeedRunSummary | None = None
        extraction: ExtractionSummary | None = None
        enrichment: EnrichmentSummary | None = None
        errors: list[str] = []
        fetcher_factory = self._fetcher_factory_for(target)

        if reset_checkpoint:
            try:
                self._checkpoints.reset(checkpoint_key(target.name, SEED_STAGE))
            except Exception as exc:
                self._stage_failed(target, "reset", exc, errors)
                stages = ()

        for stage in stages:
            if not self._context.keep_running:
                break
            try:
                if stage == "seed":
                    seed = SeedWalker(
                        store=self._store,
                        checkpoints=self._checkpoints,
                        fetcher_factory=fetcher_factory,
                        settings=self._settings.seed,
                        browser_settings=self._settings.browser,
                        context=self._context,
                    ).walk(target)
                elif stage == "extract":
                    extraction = ExtractionPool(
                        store=self._store,
                        fetcher_factory=fetcher_factory,
                        settings=self._settings.pool,
                        browser_settings=self._settings.browser,
                        context=self._context,
                    ).drain(target)
                elif stage == "enrich":
                    enrichment = EnrichmentStage(
                        store=self._store,
                        client=self._lead_client,
                        identity=self._identity,
                        credentials=self._credentials,
                        settings=self._settings.enrichment,
                        context=self._context,
                    ).run(target)
            except Exception as exc:
                self._stage_failed(target, stage, exc, errors)
                break

        status = self._status(seed=seed, extraction=extraction, enrichment=enrichment, errors=errors)
        return TargetRunSummary(
            target=target.name,
            status=status,
            seed=seed,
            extraction=extraction,
            enrichment=enrichment,
            errors=errors,
        )

    def _stage_failed(self, target: Target, stage: str, exc: Exception, errors: list[str]) -> None:
        errors.append(f"{stage}: {exc}")
        log_event(
            logger,
            logging.ERROR,
            "harvest_stage_failed",
            target=target.name,
            stage=stage,
            error=str(exc),
        )
        self._context.notify(f"{target.name}: {stage} stage failed: {exc}")

    @staticmethod
    def _status(
        *,
        seed: SeedRunSummary | None,
        extraction: ExtractionSummary | None,
        enrichment: EnrichmentSummary | None,
        errors: list[str],
    ) -> str:
        if errors:
            return "failed"
        degraded = (
            (seed is not None and seed.stop_reason == StopReason.BLOCKED)
            or (extraction is not None and extraction.failed > 0)
            or (enrichment is not None and (enrichment.failed > 0 or enrichment.halted))
        )
        return "partial_success" if degraded else "success"

    @staticmethod
    def _select_stages(stages: Sequence[str] | None) -> tuple[str, ...]:
        if not stages:
            return STAGES
        normalized = {item.strip().lower() for item in stages if item.strip()}
        unknown = normalized - set(STAGES)
        if unknown:
            raise ValueError(f"Unknown stages: {sorted(unknown)}")
        return tuple(stage for stage in STAGES if stage in normalized)

    def _format_report(self, summaries: list[TargetRunSummary]) -> str:
        lines = ["*Harvest run finished*"]
        if self._context.stop_reason:
            lines.append(f"Stopped early: {self._context.stop_reason}")
        for summary in summaries:
            parts = [f"{summary.target}: {summary.status}"]
            if summary.seed is not None:
                parts.append(f"new links {summary.seed.links_new}")
            if summary.extraction is not None:
                parts.append(
                    f"extracted {summary.extraction.succeeded}/{summary.extraction.processed}"
                )
            if summary.enrichment is not None:
                parts.append(
                    f"phones {summary.enrichment.succeeded}/{summary.enrichment.processed}"
                )
            lines.append(" | ".join(parts))
        return "\n".join(lines)


def select_targets(targets: Sequence[Target], names: Sequence[str] | None) -> list[Target]:
    enabled = [target for target in targets if target.enabled]
    if not names:
        return enabled

    normalized = {item.strip().lower() for item in names if item.strip()}
    if not normalized:
        return enabled
    return [target for target in enabled if target.name.lower() in normalized]
