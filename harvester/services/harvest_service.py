"""
harvester/services/harvest_service.py

Wires the harvesting adapters from settings and runs the engine.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import replace
from functools import lru_cache

from sqlalchemy.orm import Session

from harvester.config import HarvestSettings, get_harvest_settings, resolve_project_path
from harvester.domain.harvest import Target, TargetRunSummary
from harvester.scraping.checkpoints import (
    CheckpointStore,
    JsonFileCheckpointStore,
    SQLAlchemyCheckpointStore,
)
from harvester.scraping.config import load_targets
from harvester.scraping.credentials import BrowserCredentialRefresher, JsonFileCredentialStore
from harvester.scraping.enrichment import LeadApiClient
from harvester.scraping.engine import HarvestEngine, select_targets
from harvester.scraping.fetcher import FetcherFactory
from harvester.scraping.fetcher.playwright_fetcher import PlaywrightFetcherFactory
from harvester.scraping.identity import build_identity_rotator
from harvester.scraping.notifications import build_notification_sink
from harvester.scraping.run_context import RunContext
from harvester.scraping.storage import SQLAlchemyDocumentStore

logger = logging.getLogger(__name__)


class HarvestService:
    """
    Builds a `HarvestEngine` for one run and executes it.
    """

    def __init__(
        self,
        *,
        settings: HarvestSettings | None = None,
        session_factory: Callable[[], Session] | None = None,
    ) -> None:
        self._settings = settings or get_harvest_settings()
        if session_factory is None:
            from db.session import SessionLocal

            self._session_factory = SessionLocal
        else:
            self._session_factory = session_factory

    @property
    def settings(self) -> HarvestSettings:
        return self._settings

    def new_context(self) -> RunContext:
        return RunContext(
            notifier=build_notification_sink(self._settings.notifications),
            pool_cap=self._settings.pool.max_concurrency,
        )

    def load_targets(self, names: Sequence[str] | None = None) -> list[Target]:
        targets = load_targets(config_path=self._settings.run.targets_path)
        return select_targets(targets, names)

    def run(
        self,
        *,
        targets: Sequence[str] | None = None,
        stages: Sequence[str] | None = None,
        reset_checkpoint: bool = False,
        resume: bool = False,
        context: RunContext | None = None,
    ) -> list[TargetRunSummary]:
        settings = self._settings
        if resume:
            settings = replace(settings, seed=replace(settings.seed, resume_policy="resume"))

        run_context = context or self.new_context()
        try:
            selected = self.load_targets(targets)
            engine = HarvestEngine(
                settings=settings,
                store=SQLAlchemyDocumentStore(session_factory=self._session_factory),
                checkpoints=self._build_checkpoints(),
                fetcher_factory_for=self._fetcher_factory_for,
                lead_client=LeadApiClient(settings=settings.enrichment),
                identity=build_identity_rotator(settings.identity),
                credentials=JsonFileCredentialStore(
                    path=resolve_project_path(settings.credentials.auth_path),
                    refresher=BrowserCredentialRefresher(
                        settings=settings.credentials,
                        browser_settings=settings.browser,
                    ),
                ),
                context=run_context,
            )
            return engine.run(
                targets=selected,
                stages=stages or settings.run.stages,
                reset_checkpoint=reset_checkpoint,
            )
        finally:
            run_context.notifier.close()

    def _build_checkpoints(self) -> CheckpointStore:
        if self._settings.checkpoints.backend == "database":
            return SQLAlchemyCheckpointStore(session_factory=self._session_factory)
        return JsonFileCheckpointStore(
            path=resolve_project_path(self._settings.checkpoints.progress_path)
        )

    def _fetcher_factory_for(self, target: Target) -> FetcherFactory:
        return PlaywrightFetcherFactory(settings=self._settings.browser)


@lru_cache(maxsize=1)
def get_harvest_service() -> HarvestService:
    """
    Build and cache the harvest service.
    """

    return HarvestService()
