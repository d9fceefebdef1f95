import os

# Settings require a database URL at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")

from typing import Iterator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from hub_offload.db.session import Base
import hub_offload.models  # noqa: F401  registers every table on Base.metadata
from hub_offload.services.offload_store import SqlAlchemyOffloadStore
from hub_offload.services.reconciliation import ReconciliationEngine
from tests.fakes import MemoryStore


@pytest.fixture
def db() -> Iterator[Session]:
    """Fresh in-memory SQLite database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    session = sessionmaker(bind=engine, autoflush=False)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def sql_store(db: Session) -> SqlAlchemyOffloadStore:
    return SqlAlchemyOffloadStore(db)


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def sql_engine(sql_store: SqlAlchemyOffloadStore) -> ReconciliationEngine:
    return ReconciliationEngine(sql_store)
