"""
Durable pagination checkpoints.

`last_page` only moves forward (explicit `reset` aside); `last_page_tried`
records the most recent page attempted and may lead it.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db.models.harvest_checkpoint import HarvestCheckpoint
from harvester.domain.harvest import Checkpoint
from harvester.scraping.errors import FatalInfrastructureError


def _advance(current: int | None, candidate: int | None) -> int | None:
    if candidate is None:
        return current
    if current is None:
        return candidate
    return max(current, candidate)


class CheckpointStore(ABC):
    @abstractmethod
    def load(self, key: str) -> Checkpoint | None:
        """
        Return the stored checkpoint for `key`, if any.
        """

    @abstractmethod
    def record(
        self,
        key: str,
        *,
        last_page_tried: int,
        last_page: int | None = None,
    ) -> Checkpoint:
        """
        Store an attempted page and, when given, a completed page.
        """

    @abstractmethod
    def reset(self, key: str) -> None:
        """
        Forget the checkpoint for `key` (operator action).
        """


class JsonFileCheckpointStore(CheckpointStore):
    """
    Checkpoints kept in one JSON progress file, rewritten atomically.
    """

    def __init__(self, *, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    def load(self, key: str) -> Checkpoint | None:
        with self._lock:
            entry = self._read().get(key)
        return self._to_checkpoint(key, entry) if entry else None

    def record(
        self,
        key: str,
        *,
        last_page_tried: int,
        last_page: int | None = None,
    ) -> Checkpoint:
        with self._lock:
            data = self._read()
            entry = data.get(key) or {}
            entry = {
                "last_page_tried": last_page_tried,
                "last_page": _advance(entry.get("last_page"), last_page),
                "updated_at": datetime.now(timezone.utc).isoformat(),
            }
            data[key] = entry
            self._write(data)
        return self._to_checkpoint(key, entry)

    def reset(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if data.pop(key, None) is not None:
                self._write(data)

    def _read(self) -> dict[str, dict[str, Any]]:
        if not self._path.exists():
            return {}
        raw = json.loads(self._path.read_text(encoding="utf-8") or "{}")
        if not isinstance(raw, dict):
            raise ValueError(f"Invalid progress file (expected an object): {self._path}")
        return raw

    def _write(self, data: dict[str, dict[str, Any]]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(dir=self._path.parent, prefix=".progress_", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2, sort_keys=True)
            os.replace(temp_path, self._path)
        except OSError:
            if os.path.exists(temp_path):
                os.remove(temp_path)
            raise

    @staticmethod
    def _to_checkpoint(key: str, entry: dict[str, Any]) -> Checkpoint:
        updated_at = entry.get("updated_at")
        return Checkpoint(
            key=key,
            last_page_tried=entry.get("last_page_tried"),
            last_page=entry.get("last_page"),
            updated_at=datetime.fromisoformat(updated_at) if updated_at else None,
        )


class SQLAlchemyCheckpointStore(CheckpointStore):
    """
    Checkpoints kept in the `harvest_checkpoints` table.
    """

    def __init__(self, *, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def load(self, key: str) -> Checkpoint | None:
        with self._session_factory() as session:
            try:
                row = self._get(session, key)
            except SQLAlchemyError as exc:
                raise FatalInfrastructureError(f"Checkpoint store failure: {exc}") from exc
            return self._to_checkpoint(row) if row is not None else None

    def record(
        self,
        key: str,
        *,
        last_page_tried: int,
        last_page: int | None = None,
    ) -> Checkpoint:
        with self._session_factory() as session:
            try:
                row = self._get(session, key)
                if row is None:
                    row = HarvestCheckpoint(key=key)
                    session.add(row)
                row.last_page_tried = last_page_tried
                row.last_page = _advance(row.last_page, last_page)
                row.updated_at = datetime.now(timezone.utc)
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                raise FatalInfrastructureError(f"Checkpoint store failure: {exc}") from exc
            return self._to_checkpoint(row)

    def reset(self, key: str) -> None:
        with self._session_factory() as session:
            try:
                session.execute(delete(HarvestCheckpoint).where(HarvestCheckpoint.key == key))
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                raise FatalInfrastructureError(f"Checkpoint store failure: {exc}") from exc

    @staticmethod
    def _get(session: Session, key: str) -> HarvestCheckpoint | None:
        return session.scalars(
            select(HarvestCheckpoint).where(HarvestCheckpoint.key == key)
        ).first()

    @staticmethod
    def _to_checkpoint(row: HarvestCheckpoint) -> Checkpoint:
        return Checkpoint(
            key=row.key,
            last_page_tried=row.last_page_tried,
            last_page=row.last_page,
            updated_at=row.updated_at,
        )
