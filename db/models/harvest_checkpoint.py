"""
db/models/harvest_checkpoint.py

Durable pagination checkpoints keyed by "<target>:<stage>".
"""

from __future__ import annotations

import uuid

from sqlalchemy import Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, TimestampMixin


class HarvestCheckpoint(Base, TimestampMixin):
    __tablename__ = "harvest_checkpoints"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    key: Mapped[str] = mapped_column(String(255), nullable=False)
    last_page_tried: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_page: Mapped[int | None] = mapped_column(Integer, nullable=True)

    __table_args__ = (UniqueConstraint("key", name="uq_harvest_checkpoints_key"),)
