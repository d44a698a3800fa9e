"""Shared fixtures for docflow engine tests.

Every test runs against SQLite through aiosqlite so no PostgreSQL instance
is needed.  Service-level tests use a temporary database file so that the
separate sessions opened by each call see one another's commits.
"""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import pytest
import pytest_asyncio
from docflow_engine.config import Settings
from docflow_engine.context import StaticTenantResolver
from docflow_engine.state.database import get_session
from docflow_engine.state.repository import DocumentRepository
from docflow_engine.state.sqlite_adapter import create_local_tables, get_local_engine
from docflow_engine.state.tables import Base
from sqlalchemy import JSON, DateTime
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.types import TypeDecorator

TENANT = "tenant-a"


def _patch_columns_for_sqlite() -> None:
    """Substitute Postgres-specific column types for SQLite compatibility.

    * ``JSONB`` → ``JSON``.
    * ``DateTime(timezone=True)`` → a TypeDecorator that coerces the naive
      datetimes SQLite returns back to UTC-aware.
    """

    class _UTCAwareDateTime(TypeDecorator):
        impl = DateTime
        cache_ok = True

        def process_result_value(self, value, dialect):  # type: ignore[override]
            if value is not None and value.tzinfo is None:
                return value.replace(tzinfo=UTC)
            return value

    for table in Base.metadata.tables.values():
        for column in table.columns:
            if isinstance(column.type, JSONB):
                column.type = JSON()
            elif isinstance(column.type, DateTime) and getattr(column.type, "timezone", False):
                column.type = _UTCAwareDateTime()


_patch_columns_for_sqlite()


class FixedClock:
    """Callable clock whose time the test controls."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class RecordingSink:
    """Change-tracking sink that keeps records in memory."""

    def __init__(self) -> None:
        self.records: list[dict] = []

    async def record(self, **kwargs) -> None:
        self.records.append(kwargs)

    def actions(self) -> list[str]:
        return [entry["action"] for entry in self.records]


@pytest_asyncio.fixture
async def async_session():
    """Provide an async session backed by an in-memory SQLite database."""
    engine = create_async_engine("sqlite+aiosqlite://", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False)
    async with factory() as session:
        yield session

    await engine.dispose()


@pytest_asyncio.fixture
async def engine(tmp_path: Path):
    """Provide an engine over a fresh SQLite file with all tables created."""
    db_engine = get_local_engine(tmp_path / "state.db")
    await create_local_tables(db_engine)
    yield db_engine
    await db_engine.dispose()


@pytest.fixture
def settings() -> Settings:
    return Settings(database_url="sqlite+aiosqlite:///:memory:")


@pytest.fixture
def tenant_resolver() -> StaticTenantResolver:
    return StaticTenantResolver(TENANT)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 3, 15, 10, 30, tzinfo=UTC))


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def make_document(engine: AsyncEngine):
    """Return a coroutine function that inserts a Draft document and returns its id."""

    async def _make(
        *,
        tenant_id: str = TENANT,
        business_party_id: str | None = "party-1",
        document_type_id: str | None = "invoice",
        number: str | None = None,
        rows: list[dict] | None = None,
    ) -> str:
        async with get_session(engine) as session:
            repo = DocumentRepository(session, tenant_id)
            document = await repo.create(
                created_by="tester",
                document_type_id=document_type_id,
                business_party_id=business_party_id,
                number=number,
            )
            for row in rows or []:
                await repo.add_row(document.id, **row)
            return document.id

    return _make
