"""
Lead enrichment exports.
"""

from harvester.scraping.enrichment.client import LeadApiClient, LeadResult
from harvester.scraping.enrichment.stage import EnrichmentStage, RecordAttempts, RecordOutcome

__all__ = [
    "EnrichmentStage",
    "LeadApiClient",
    "LeadResult",
    "RecordAttempts",
    "RecordOutcome",
]
