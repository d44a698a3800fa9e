"""Unit tests for engine creation and session lifecycle."""

from __future__ import annotations

import gc
import weakref
from pathlib import Path

import pytest
from docflow_engine.state.database import dialect_name, get_engine, get_session
from docflow_engine.state.repository import DocumentRepository
from docflow_engine.state.sqlite_adapter import create_local_tables
from docflow_engine.state.tables import Base
from sqlalchemy.ext.asyncio import create_async_engine


class TestGetEngine:
    @pytest.mark.asyncio
    async def test_sqlite_url_dispatches_to_local_engine(self, tmp_path: Path):
        db_file = tmp_path / "nested" / "state.db"
        engine = get_engine(f"sqlite+aiosqlite:///{db_file}")
        try:
            assert engine.dialect.name == "sqlite"
            await create_local_tables(engine)
            assert db_file.exists()
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_create_local_tables_is_idempotent(self, engine):
        await create_local_tables(engine)
        await create_local_tables(engine)


class TestGetSession:
    @pytest.mark.asyncio
    async def test_commits_on_success(self, engine):
        async with get_session(engine) as session:
            document = await DocumentRepository(session, "t1").create(created_by="alice")

        async with get_session(engine) as session:
            assert await DocumentRepository(session, "t1").get_status(document.id) == "DRAFT"

    @pytest.mark.asyncio
    async def test_rolls_back_on_error(self, engine):
        document_id = None
        with pytest.raises(RuntimeError):
            async with get_session(engine) as session:
                document = await DocumentRepository(session, "t1").create(created_by="alice")
                document_id = document.id
                raise RuntimeError("abort")

        async with get_session(engine) as session:
            assert await DocumentRepository(session, "t1").get(document_id) is None

    @pytest.mark.asyncio
    async def test_reports_sqlite_dialect(self, engine):
        async with get_session(engine) as session:
            assert dialect_name(session) == "sqlite"

    @pytest.mark.asyncio
    async def test_does_not_keep_disposed_engines_alive(self):
        engine = create_async_engine("sqlite+aiosqlite://")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        async with get_session(engine) as session:
            await DocumentRepository(session, "t1").create(created_by="alice")
        await engine.dispose()

        engine_ref = weakref.ref(engine)
        del engine, conn, session
        gc.collect()

        assert engine_ref() is None
