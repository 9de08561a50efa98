"""
Repository layer exports.
"""

from db.repositories.harvest_job_repository import HarvestJobRepository
from db.repositories.harvest_status_repository import HarvestStatusRepository, TargetCounts

__all__ = [
    "HarvestJobRepository",
    "HarvestStatusRepository",
    "TargetCounts",
]
