"""
Read-only aggregate queries backing the harvest status endpoint.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from db.models.candidate_url import CandidateUrl
from db.models.listing_record import ListingRecord


@dataclass
class TargetCounts:
    target_name: str
    candidates_by_state: dict[str, int] = field(default_factory=dict)
    records: int = 0
    records_with_phones: int = 0
    records_with_phone_errors: int = 0


class HarvestStatusRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def counts_by_target(self, *, target_name: str | None = None) -> list[TargetCounts]:
        counts: dict[str, TargetCounts] = {}

        candidate_stmt = select(
            CandidateUrl.target_name,
            CandidateUrl.state,
            func.count(CandidateUrl.id),
        ).group_by(CandidateUrl.target_name, CandidateUrl.state)
        if target_name:
            candidate_stmt = candidate_stmt.where(CandidateUrl.target_name == target_name)
        for name, state, total in self._session.execute(candidate_stmt):
            entry = counts.setdefault(name, TargetCounts(target_name=name))
            entry.candidates_by_state[state] = int(total)

        record_stmt = select(
            ListingRecord.target_name,
            func.count(ListingRecord.id),
            func.count(ListingRecord.phone_numbers),
            func.count(ListingRecord.phone_error),
        ).group_by(ListingRecord.target_name)
        if target_name:
            record_stmt = record_stmt.where(ListingRecord.target_name == target_name)
        for name, total, with_phones, with_errors in self._session.execute(record_stmt):
            entry = counts.setdefault(name, TargetCounts(target_name=name))
            entry.records = int(total)
            entry.records_with_phones = int(with_phones)
            entry.records_with_phone_errors = int(with_errors)

        return [counts[name] for name in sorted(counts)]
