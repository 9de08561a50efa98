"""
harvester/api/routers/harvest.py

Harvest run trigger and status endpoints.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from db.models.harvest_job import HarvestJob
from db.session import get_db
from harvester.domain.harvest import CandidateState
from harvester.schemas.harvest import (
    HarvestJobAcceptedResponse,
    HarvestJobListResponse,
    HarvestJobStatusResponse,
    HarvestRunRequest,
    HarvestStatusResponse,
    TargetStatusResponse,
)
from harvester.services.harvest_job_service import (
    FastAPIBackgroundTaskExecutor,
    HarvestJobConflictError,
    HarvestJobService,
    get_harvest_job_service,
)

router = APIRouter(tags=["harvest"])


@router.post(
    "/harvest/runs",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=HarvestJobAcceptedResponse,
)
def trigger_harvest_run(
    background_tasks: BackgroundTasks,
    payload: HarvestRunRequest | None = None,
    db: Session = Depends(get_db),
    job_service: HarvestJobService = Depends(get_harvest_job_service),
) -> HarvestJobAcceptedResponse:
    request = payload or HarvestRunRequest()
    try:
        job = job_service.trigger_run(
            db=db,
            executor=FastAPIBackgroundTaskExecutor(background_tasks),
            targets=request.targets,
            stages=request.stages,
            reset_checkpoint=request.reset_checkpoint,
            resume=request.resume,
        )
    except HarvestJobConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    return HarvestJobAcceptedResponse(
        job_id=job.id,
        status=job.status,
        created_at=job.created_at,
    )


@router.get("/harvest/runs", response_model=HarvestJobListResponse)
def list_harvest_runs(
    status_filter: str | None = Query(default=None, alias="status", description="Optional status filter"),
    limit: int = Query(default=100, ge=1, le=500, description="Max jobs returned"),
    db: Session = Depends(get_db),
    job_service: HarvestJobService = Depends(get_harvest_job_service),
) -> HarvestJobListResponse:
    jobs = job_service.list_job_statuses(db=db, limit=limit, status=status_filter)
    return HarvestJobListResponse(jobs=[_to_status_response(job) for job in jobs])


@router.get("/harvest/runs/{job_id}", response_model=HarvestJobStatusResponse)
def get_harvest_run(
    job_id: UUID,
    db: Session = Depends(get_db),
    job_service: HarvestJobService = Depends(get_harvest_job_service),
) -> HarvestJobStatusResponse:
    job = job_service.get_job_status(db=db, job_id=job_id)
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Harvest job not found: {job_id}",
        )
    return _to_status_response(job)


@router.get("/harvest/status", response_model=HarvestStatusResponse)
def get_harvest_status(
    target: str | None = Query(default=None, description="Optional target name filter"),
    db: Session = Depends(get_db),
    job_service: HarvestJobService = Depends(get_harvest_job_service),
) -> HarvestStatusResponse:
    counts = job_service.get_target_counts(db=db, target_name=target)
    return HarvestStatusResponse(
        targets=[
            TargetStatusResponse(
                target_name=entry.target_name,
                candidates_new=entry.candidates_by_state.get(CandidateState.NEW, 0),
                candidates_scraped=entry.candidates_by_state.get(CandidateState.SCRAPED, 0),
                candidates_failed=entry.candidates_by_state.get(CandidateState.FAILED, 0),
                records=entry.records,
                records_with_phones=entry.records_with_phones,
                records_with_phone_errors=entry.records_with_phone_errors,
            )
            for entry in counts
        ]
    )


def _to_status_response(job: HarvestJob) -> HarvestJobStatusResponse:
    return HarvestJobStatusResponse(
        job_id=job.id,
        status=job.status,
        created_at=job.created_at,
        updated_at=job.updated_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
        request_payload=job.request_payload,
        result_payload=job.result_payload,
        error_message=job.error_message,
    )
