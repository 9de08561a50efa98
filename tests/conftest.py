from __future__ import annotations

from collections.abc import Iterator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import db.models  # noqa: F401 registers all ORM models on Base.metadata
from db.base import Base
from db.session import create_session_factory


@pytest.fixture()
def session_factory() -> Iterator[sessionmaker[Session]]:
    """
    In-memory SQLite database with every harvest table, shared across threads.
    """

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    try:
        yield create_session_factory(engine)
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()
