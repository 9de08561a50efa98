"""
harvester/domain package marker.
"""

from harvester.domain.harvest import (
    CANDIDATES,
    LISTINGS,
    CandidateState,
    Checkpoint,
    Credential,
    EnrichmentSummary,
    ExtractionSummary,
    FieldSelector,
    PhoneResult,
    SeedRunSummary,
    SiteProfile,
    StopReason,
    Target,
    TargetRunSummary,
    checkpoint_key,
    record_key,
)

__all__ = [
    "CANDIDATES",
    "LISTINGS",
    "CandidateState",
    "Checkpoint",
    "Credential",
    "EnrichmentSummary",
    "ExtractionSummary",
    "FieldSelector",
    "PhoneResult",
    "SeedRunSummary",
    "SiteProfile",
    "StopReason",
    "Target",
    "TargetRunSummary",
    "checkpoint_key",
    "record_key",
]
