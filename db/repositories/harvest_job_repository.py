"""
Repository for harvest job lifecycle persistence and status lookup.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from db.models.harvest_job import HarvestJob, HarvestJobStatus


class HarvestJobRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create_job(self, *, request_payload: dict[str, Any] | None = None) -> HarvestJob:
        job = HarvestJob(
            status=HarvestJobStatus.PENDING,
            request_payload=request_payload,
        )
        self._session.add(job)
        self._session.flush()
        self._session.refresh(job)
        return job

    def get_job(self, job_id: uuid.UUID) -> HarvestJob | None:
        return self._session.get(HarvestJob, job_id)

    def list_jobs(self, *, limit: int = 100, status: str | None = None) -> list[HarvestJob]:
        stmt: Select[tuple[HarvestJob]] = select(HarvestJob)
        if status:
            stmt = stmt.where(HarvestJob.status == status)
        stmt = stmt.order_by(HarvestJob.created_at.desc()).limit(max(1, limit))
        return list(self._session.scalars(stmt).all())

    def has_active_job(self) -> bool:
        stmt = select(HarvestJob.id).where(
            HarvestJob.status.in_([HarvestJobStatus.PENDING, HarvestJobStatus.RUNNING])
        )
        return self._session.scalars(stmt.limit(1)).first() is not None

    def mark_running(self, *, job_id: uuid.UUID) -> HarvestJob | None:
        job = self.get_job(job_id)
        if job is None:
            return None
        job.status = HarvestJobStatus.RUNNING
        job.started_at = datetime.now(timezone.utc)
        job.completed_at = None
        job.error_message = None
        return job

    def mark_completed(
        self,
        *,
        job_id: uuid.UUID,
        result_payload: dict[str, Any] | None = None,
    ) -> HarvestJob | None:
        job = self.get_job(job_id)
        if job is None:
            return None
        job.status = HarvestJobStatus.COMPLETED
        job.completed_at = datetime.now(timezone.utc)
        job.result_payload = result_payload
        job.error_message = None
        return job

    def mark_failed(
        self,
        *,
        job_id: uuid.UUID,
        error_message: str,
        result_payload: dict[str, Any] | None = None,
    ) -> HarvestJob | None:
        job = self.get_job(job_id)
        if job is None:
            return None
        job.status = HarvestJobStatus.FAILED
        job.completed_at = datetime.now(timezone.utc)
        job.error_message = error_message
        if result_payload is not None:
            job.result_payload = result_payload
        return job
