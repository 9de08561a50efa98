"""
Model package exports.

Import all SQLAlchemy models here so metadata registration and Alembic
autogeneration work without extra imports.
"""

from db.models.candidate_url import CandidateUrl
from db.models.harvest_checkpoint import HarvestCheckpoint
from db.models.harvest_job import HarvestJob
from db.models.listing_record import ListingRecord

__all__ = [
    "CandidateUrl",
    "HarvestCheckpoint",
    "HarvestJob",
    "ListingRecord",
]
