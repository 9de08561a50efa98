"""create harvest tables

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "candidate_urls",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("target_name", sa.String(length=120), nullable=False),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("state", sa.String(length=16), nullable=False, comment="new, scraped, failed"),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("scraped_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("target_name", "url", name="uq_candidate_urls_target_url"),
    )
    op.create_index(
        "ix_candidate_urls_target_state",
        "candidate_urls",
        ["target_name", "state"],
        unique=False,
    )

    op.create_table(
        "listing_records",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("target_name", sa.String(length=120), nullable=False),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=True,
            comment="Fields extracted from the detail page by the site profile",
        ),
        sa.Column("last_result", sa.String(length=16), nullable=True),
        sa.Column("last_scraped_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("phone_numbers", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("lead_id", sa.String(length=64), nullable=True),
        sa.Column("phone_error", sa.Text(), nullable=True),
        sa.Column("last_phone_result", sa.String(length=16), nullable=True, comment="ok, error"),
        sa.Column("phone_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("whatsapp_numbers", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("whatsapp_lead_id", sa.String(length=64), nullable=True),
        sa.Column("whatsapp_updated_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("target_name", "url", name="uq_listing_records_target_url"),
    )
    op.create_index("ix_listing_records_target_name", "listing_records", ["target_name"], unique=False)
    op.create_index(
        "ix_listing_records_last_phone_result",
        "listing_records",
        ["last_phone_result"],
        unique=False,
    )

    op.create_table(
        "harvest_checkpoints",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("key", sa.String(length=255), nullable=False),
        sa.Column("last_page_tried", sa.Integer(), nullable=True),
        sa.Column("last_page", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("key", name="uq_harvest_checkpoints_key"),
    )

    op.create_table(
        "harvest_jobs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column(
            "request_payload",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=True,
            comment="Selected targets and stages",
        ),
        sa.Column(
            "result_payload",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=True,
            comment="Per-target run summaries",
        ),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_harvest_jobs_status", "harvest_jobs", ["status"], unique=False)
    op.create_index("ix_harvest_jobs_created_at", "harvest_jobs", ["created_at"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_harvest_jobs_created_at", table_name="harvest_jobs")
    op.drop_index("ix_harvest_jobs_status", table_name="harvest_jobs")
    op.drop_table("harvest_jobs")
    op.drop_table("harvest_checkpoints")
    op.drop_index("ix_listing_records_last_phone_result", table_name="listing_records")
    op.drop_index("ix_listing_records_target_name", table_name="listing_records")
    op.drop_table("listing_records")
    op.drop_index("ix_candidate_urls_target_state", table_name="candidate_urls")
    op.drop_table("candidate_urls")
