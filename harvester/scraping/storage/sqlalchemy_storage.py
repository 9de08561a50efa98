"""
SQLAlchemy-backed document store.

Upserts compile to `INSERT ... ON CONFLICT` for PostgreSQL (production) and
SQLite (tests); each operation runs in its own short session so worker
threads never share one.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import ColumnElement, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db.base import Base
from db.models.candidate_url import CandidateUrl
from db.models.listing_record import ListingRecord
from harvester.domain.harvest import CANDIDATES, LISTINGS
from harvester.scraping.errors import FatalInfrastructureError
from harvester.scraping.storage.base import DocumentStore, parse_lookup

COLLECTION_MODELS: dict[str, type[Base]] = {
    CANDIDATES: CandidateUrl,
    LISTINGS: ListingRecord,
}

INSERT_BUILDERS = {
    "postgresql": postgresql_insert,
    "sqlite": sqlite_insert,
}


class SQLAlchemyDocumentStore(DocumentStore):
    """
    Persist harvested documents through short-lived ORM sessions.
    """

    def __init__(self, *, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def upsert(
        self,
        collection: str,
        *,
        key: Mapping[str, Any],
        set_on_insert: Mapping[str, Any],
        always_set: Mapping[str, Any],
    ) -> bool:
        model = self._model(collection)
        now = datetime.now(timezone.utc)
        values = {**set_on_insert, **always_set, **key, "updated_at": now}
        self._check_columns(model, values)

        with self._session_scope() as session:
            insert_builder = self._insert_builder(session)
            stmt = insert_builder(model).values(**values)
            if not always_set:
                stmt = stmt.on_conflict_do_nothing(index_elements=list(key))
                return (session.execute(stmt).rowcount or 0) > 0

            # Both branches of ON CONFLICT DO UPDATE report one affected row.
            existing = session.scalar(
                select(func.count()).select_from(model).where(*self._conditions(model, key))
            )
            update_values = {name: stmt.excluded[name] for name in always_set}
            update_values["updated_at"] = stmt.excluded.updated_at
            stmt = stmt.on_conflict_do_update(index_elements=list(key), set_=update_values)
            session.execute(stmt)
            return not existing

    def find_batch(
        self,
        collection: str,
        *,
        filters: Mapping[str, Any],
        limit: int,
        after: str | None = None,
    ) -> list[dict[str, Any]]:
        model = self._model(collection)
        stmt = select(model).where(*self._conditions(model, filters))
        if after is not None:
            stmt = stmt.where(model.url > after)
        stmt = stmt.order_by(model.url).limit(max(1, limit))

        with self._session_scope() as session:
            rows = session.scalars(stmt).all()
            return [self._to_document(model, row) for row in rows]

    def update(
        self,
        collection: str,
        *,
        key: Mapping[str, Any],
        fields: Mapping[str, Any],
    ) -> bool:
        model = self._model(collection)
        values = {**fields, "updated_at": datetime.now(timezone.utc)}
        self._check_columns(model, values)
        stmt = update(model).where(*self._conditions(model, key)).values(**values)

        with self._session_scope() as session:
            result = session.execute(stmt)
            return (result.rowcount or 0) > 0

    def count(self, collection: str, *, filters: Mapping[str, Any]) -> int:
        model = self._model(collection)
        stmt = select(func.count()).select_from(model).where(*self._conditions(model, filters))
        with self._session_scope() as session:
            return int(session.scalar(stmt) or 0)

    @contextmanager
    def _session_scope(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise FatalInfrastructureError(f"Document store failure: {exc}") from exc
        finally:
            session.close()

    @staticmethod
    def _insert_builder(session: Session) -> Callable[..., Any]:
        dialect = session.get_bind().dialect.name
        builder = INSERT_BUILDERS.get(dialect)
        if builder is None:
            raise FatalInfrastructureError(f"Upserts are not supported on dialect '{dialect}'.")
        return builder

    @staticmethod
    def _model(collection: str) -> type[Base]:
        model = COLLECTION_MODELS.get(collection)
        if model is None:
            raise ValueError(f"Unknown collection: {collection}")
        return model

    @staticmethod
    def _check_columns(model: type[Base], values: Mapping[str, Any]) -> None:
        unknown = sorted(set(values) - set(model.__table__.columns.keys()))
        if unknown:
            raise ValueError(f"Unknown fields for {model.__tablename__}: {', '.join(unknown)}")

    @classmethod
    def _conditions(
        cls,
        model: type[Base],
        filters: Mapping[str, Any],
    ) -> list[ColumnElement[bool]]:
        columns = model.__table__.columns
        conditions: list[ColumnElement[bool]] = []
        for name, value in filters.items():
            field_name, lookup = parse_lookup(name)
            if field_name not in columns:
                raise ValueError(f"Unknown filter field for {model.__tablename__}: {field_name}")
            column = columns[field_name]
            if lookup == "eq":
                conditions.append(column.is_(None) if value is None else column == value)
            elif lookup == "ne":
                conditions.append(or_(column != value, column.is_(None)))
            elif lookup == "in":
                conditions.append(column.in_(list(value)))
            elif lookup == "isnull":
                conditions.append(column.is_(None) if value else column.is_not(None))
            elif lookup == "lt":
                conditions.append(column < value)
            elif lookup == "gt":
                conditions.append(column > value)
        return conditions

    @staticmethod
    def _to_document(model: type[Base], row: Base) -> dict[str, Any]:
        return {name: getattr(row, name) for name in model.__table__.columns.keys()}
