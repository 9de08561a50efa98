"""
harvester/domain/harvest.py

Domain models for listing discovery, extraction and enrichment.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

CANDIDATES = "candidate_urls"
LISTINGS = "listing_records"


class CandidateState:
    NEW = "new"
    SCRAPED = "scraped"
    FAILED = "failed"


class StopReason:
    EMPTY_PAGE = "empty_page"
    REACHED_LIMIT = "reached_limit"
    BLOCKED = "blocked"
    STOPPED = "stopped"


class PhoneResult:
    OK = "ok"
    ERROR = "error"


@dataclass(frozen=True)
class FieldSelector:
    """
    One field of a detail-page field map.

    kind:
    - text: stripped text of the first match
    - attr: `attribute` of the first match
    - list: stripped text of every match
    - join: texts of every match (minus `exclude_class`) joined by `separator`
    - split: text of the first match split on `separator` into `split_into`
    """

    name: str
    selector: str
    kind: str = "text"
    attribute: str | None = None
    exclude_class: str | None = None
    separator: str | None = None
    split_into: tuple[str, ...] = ()


@dataclass(frozen=True)
class SiteProfile:
    """
    Site-specific selectors shared by the targets of one listings site.
    """

    name: str
    base_url: str
    listing_selector: str
    fields: tuple[FieldSelector, ...]
    required_fields: tuple[str, ...] = ()
    pagination_selector: str | None = None
    ready_selector: str | None = None


@dataclass(frozen=True)
class Target:
    """
    One search to harvest: where discovery starts and where it may stop.

    `page_limit` is the last page index walked (inclusive); None means the
    walk is bounded by the probed page count or by an empty page.
    """

    name: str
    seed_url: str
    profile: SiteProfile
    start_page: int = 1
    page_limit: int | None = None
    enabled: bool = True


@dataclass(frozen=True)
class Credential:
    cookie: str | None = None
    authorization_token: str | None = None
    refreshed_at: datetime | None = None

    @property
    def is_complete(self) -> bool:
        return bool(self.cookie) and bool(self.authorization_token)


@dataclass(frozen=True)
class Checkpoint:
    key: str
    last_page_tried: int | None = None
    last_page: int | None = None
    updated_at: datetime | None = None


def checkpoint_key(target_name: str, stage: str) -> str:
    return f"{target_name}:{stage}"


def record_key(target_name: str, url: str) -> dict[str, str]:
    return {"target_name": target_name, "url": url}


@dataclass(frozen=True)
class SeedRunSummary:
    """
    Outcome of one discovery walk for a target.
    """

    target: str
    start_page: int
    end_page: int | None
    pages_processed: int
    pages_skipped: int
    links_found: int
    links_new: int
    stop_reason: str
    last_page: int | None


@dataclass(frozen=True)
class ExtractionSummary:
    """
    Outcome of draining the candidate queue of a target.
    """

    target: str
    cycles: int
    processed: int
    succeeded: int
    failed: int
    session_restarts: int
    workers_per_cycle: list[int] = field(default_factory=list)


@dataclass(frozen=True)
class EnrichmentSummary:
    """
    Outcome of one sequential enrichment pass for a target.
    """

    target: str
    processed: int
    succeeded: int
    failed: int
    skipped: int
    rate_limited: int
    unauthorized: int
    rotations: int
    refreshes: int
    whatsapp_succeeded: int
    halted: bool


@dataclass(frozen=True)
class TargetRunSummary:
    """
    Per-target outcome of a harvest run across the selected stages.
    """

    target: str
    status: str
    seed: SeedRunSummary | None = None
    extraction: ExtractionSummary | None = None
    enrichment: EnrichmentSummary | None = None
    errors: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)
