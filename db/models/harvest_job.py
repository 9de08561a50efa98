"""
db/models/harvest_job.py

Harvest job model for API-triggered background runs.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, JSONVariant, TimestampMixin


class HarvestJobStatus:
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class HarvestJob(Base, TimestampMixin):
    __tablename__ = "harvest_jobs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=HarvestJobStatus.PENDING,
    )
    request_payload: Mapped[dict[str, Any] | None] = mapped_column(
        JSONVariant,
        nullable=True,
        comment="Selected targets and stages",
    )
    result_payload: Mapped[dict[str, Any] | None] = mapped_column(
        JSONVariant,
        nullable=True,
        comment="Per-target run summaries",
    )
    error_message: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    __table_args__ = (
        Index("ix_harvest_jobs_status", "status"),
        Index("ix_harvest_jobs_created_at", "created_at"),
    )
