"""
Orchestrator service for background harvest runs and their job records.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Sequence
from functools import lru_cache
from typing import Any, Protocol

from fastapi import BackgroundTasks
from sqlalchemy.orm import Session

from db.models.harvest_job import HarvestJob
from db.repositories.harvest_job_repository import HarvestJobRepository
from db.repositories.harvest_status_repository import HarvestStatusRepository, TargetCounts
from harvester.services.harvest_service import HarvestService, get_harvest_service

logger = logging.getLogger(__name__)


class HarvestJobConflictError(RuntimeError):
    """
    Raised when a run is requested while another one is pending or running.
    """


class HarvestTaskExecutor(Protocol):
    def submit(self, task: Callable[..., None], *args: Any, **kwargs: Any) -> None:
        ...


class FastAPIBackgroundTaskExecutor:
    def __init__(self, background_tasks: BackgroundTasks) -> None:
        self._background_tasks = background_tasks

    def submit(self, task: Callable[..., None], *args: Any, **kwargs: Any) -> None:
        self._background_tasks.add_task(task, *args, **kwargs)


class HarvestJobService:
    """
    Coordinates job creation, background execution and status persistence.
    """

    def __init__(
        self,
        *,
        session_factory: Callable[[], Session] | None = None,
        harvest_service: HarvestService | None = None,
    ) -> None:
        if session_factory is None:
            from db.session import SessionLocal

            self._session_factory = SessionLocal
        else:
            self._session_factory = session_factory

        self._harvest_service = harvest_service or get_harvest_service()

    def trigger_run(
        self,
        *,
        db: Session,
        executor: HarvestTaskExecutor,
        targets: Sequence[str] | None = None,
        stages: Sequence[str] | None = None,
        reset_checkpoint: bool = False,
        resume: bool = False,
    ) -> HarvestJob:
        request_payload = {
            "targets": list(targets) if targets else None,
            "stages": list(stages) if stages else None,
            "reset_checkpoint": reset_checkpoint,
            "resume": resume,
        }

        repository = HarvestJobRepository(db)
        with db.begin():
            if repository.has_active_job():
                raise HarvestJobConflictError("A harvest run is already pending or running.")
            job = repository.create_job(request_payload=request_payload)

        try:
            executor.submit(self._run_harvest_job, job.id, request_payload)
        except Exception:
            with db.begin():
                repository.mark_failed(
                    job_id=job.id,
                    error_message="Failed to schedule harvest run.",
                )
            raise

        return job

    def get_job_status(self, *, db: Session, job_id: uuid.UUID) -> HarvestJob | None:
        repository = HarvestJobRepository(db)
        return repository.get_job(job_id)

    def list_job_statuses(
        self,
        *,
        db: Session,
        limit: int = 100,
        status: str | None = None,
    ) -> list[HarvestJob]:
        repository = HarvestJobRepository(db)
        return repository.list_jobs(limit=limit, status=status)

    def get_target_counts(self, *, db: Session, target_name: str | None = None) -> list[TargetCounts]:
        repository = HarvestStatusRepository(db)
        return repository.counts_by_target(target_name=target_name)

    def _run_harvest_job(self, job_id: uuid.UUID, request_payload: dict[str, Any]) -> None:
        with self._session_factory() as db:
            repository = HarvestJobRepository(db)
            try:
                running_job = repository.mark_running(job_id=job_id)
                if running_job is None:
                    raise RuntimeError(f"Harvest job not found: {job_id}")
                db.commit()

                summaries = self._harvest_service.run(
                    targets=request_payload.get("targets"),
                    stages=request_payload.get("stages"),
                    reset_checkpoint=bool(request_payload.get("reset_checkpoint")),
                    resume=bool(request_payload.get("resume")),
                )
                result_payload = {
                    "target_summaries": [summary.as_dict() for summary in summaries],
                    "failed_targets": [
                        summary.target for summary in summaries if summary.status == "failed"
                    ],
                }
                completed_job = repository.mark_completed(job_id=job_id, result_payload=result_payload)
                if completed_job is None:
                    raise RuntimeError(f"Harvest job not found: {job_id}")
                db.commit()
            except Exception as exc:
                self._mark_job_failed(db=db, job_id=job_id, exc=exc)

    def _mark_job_failed(self, *, db: Session, job_id: uuid.UUID, exc: Exception) -> None:
        repository = HarvestJobRepository(db)
        error_message = f"{type(exc).__name__}: {exc}"
        logger.exception("Harvest job failed id=%s error=%s", job_id, error_message)
        try:
            db.rollback()
            failed_job = repository.mark_failed(
                job_id=job_id,
                error_message=error_message[:2000],
            )
            if failed_job is None:
                logger.error("Unable to mark harvest job as failed because it was not found id=%s", job_id)
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("Failed to persist failed harvest job state id=%s", job_id)


@lru_cache(maxsize=1)
def get_harvest_job_service() -> HarvestJobService:
    return HarvestJobService()
