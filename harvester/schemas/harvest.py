"""
harvester/schemas/harvest.py

Request and response schemas for harvest run endpoints.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from harvester.config import STAGES


class HarvestRunRequest(BaseModel):
    """
    Body of `POST /harvest/runs`. Empty selections mean every enabled
    target and every stage.
    """

    targets: list[str] | None = None
    stages: list[str] | None = None
    reset_checkpoint: bool = False
    resume: bool = False

    @field_validator("stages")
    @classmethod
    def _known_stages(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        normalized = [item.strip().lower() for item in value if item.strip()]
        unknown = sorted(set(normalized) - set(STAGES))
        if unknown:
            raise ValueError(f"Unknown stages: {unknown}. Allowed: {list(STAGES)}")
        return normalized or None


class HarvestJobAcceptedResponse(BaseModel):
    job_id: UUID
    status: str
    created_at: datetime


class HarvestJobStatusResponse(BaseModel):
    job_id: UUID
    status: str
    created_at: datetime
    updated_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    request_payload: dict[str, Any] | None = None
    result_payload: dict[str, Any] | None = None
    error_message: str | None = None


class HarvestJobListResponse(BaseModel):
    jobs: list[HarvestJobStatusResponse] = Field(default_factory=list)


class TargetStatusResponse(BaseModel):
    """
    Plain per-target progress counts.
    """

    target_name: str
    candidates_new: int = Field(0, ge=0)
    candidates_scraped: int = Field(0, ge=0)
    candidates_failed: int = Field(0, ge=0)
    records: int = Field(0, ge=0)
    records_with_phones: int = Field(0, ge=0)
    records_with_phone_errors: int = Field(0, ge=0)


class HarvestStatusResponse(BaseModel):
    targets: list[TargetStatusResponse] = Field(default_factory=list)
