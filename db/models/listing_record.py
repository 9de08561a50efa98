"""
db/models/listing_record.py

Extracted listing details plus contact enrichment results.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Index, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, JSONVariant, TimestampMixin


class ListingRecord(Base, TimestampMixin):
    __tablename__ = "listing_records"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    target_name: Mapped[str] = mapped_column(String(120), nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[dict[str, Any] | None] = mapped_column(
        JSONVariant,
        nullable=True,
        comment="Fields extracted from the detail page by the site profile",
    )
    last_result: Mapped[str | None] = mapped_column(String(16), nullable=True)
    last_scraped_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    phone_numbers: Mapped[list[str] | None] = mapped_column(JSONVariant, nullable=True)
    lead_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    phone_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_phone_result: Mapped[str | None] = mapped_column(
        String(16),
        nullable=True,
        comment="ok, error",
    )
    phone_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    whatsapp_numbers: Mapped[list[str] | None] = mapped_column(JSONVariant, nullable=True)
    whatsapp_lead_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    whatsapp_updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    __table_args__ = (
        UniqueConstraint("target_name", "url", name="uq_listing_records_target_url"),
        Index("ix_listing_records_target_name", "target_name"),
        Index("ix_listing_records_last_phone_result", "last_phone_result"),
    )
