"""Unit tests for the state repositories.

Uses an in-memory SQLite database via aiosqlite so the tests run without a
PostgreSQL instance.

Covers:
- Counter lookup by key (including NULL years) and the allocation lookup order
- The live-key unique index and soft delete
- Document creation, rows, status lookups and numbering
- Append-only enforcement on status history and audit log
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from docflow_engine.errors import AppendOnlyViolationError, CounterAlreadyExistsError
from docflow_engine.state.repository import (
    AuditRepository,
    CounterRepository,
    DocumentRepository,
    StatusHistoryRepository,
    advisory_lock_id,
    acquire_advisory_xact_lock,
)
from sqlalchemy.ext.asyncio import AsyncSession

# ---------------------------------------------------------------------------
# Advisory lock ids
# ---------------------------------------------------------------------------


class TestAdvisoryLockId:
    def test_stable_for_same_key(self):
        assert advisory_lock_id("document_counter", "t1", "inv", "A") == advisory_lock_id(
            "document_counter", "t1", "inv", "A"
        )

    def test_differs_between_keys(self):
        assert advisory_lock_id("document_counter", "t1", "inv", "A") != advisory_lock_id(
            "document_counter", "t1", "inv", "B"
        )

    def test_part_boundaries_matter(self):
        assert advisory_lock_id("ab", "c") != advisory_lock_id("a", "bc")

    def test_fits_signed_bigint(self):
        lock_id = advisory_lock_id("x")
        assert -(2**63) <= lock_id < 2**63

    @pytest.mark.asyncio
    async def test_noop_on_sqlite(self, async_session: AsyncSession):
        await acquire_advisory_xact_lock(async_session, "document_counter", "t1")


# ---------------------------------------------------------------------------
# Counters
# ---------------------------------------------------------------------------


class TestCounterRepository:
    @pytest.mark.asyncio
    async def test_create_and_get_by_key(self, async_session: AsyncSession):
        repo = CounterRepository(async_session, tenant_id="t1")
        created = await repo.create(document_type_id="inv", series="A", year=2024, created_by="alice")

        fetched = await repo.get_by_key("inv", "A", 2024)
        assert fetched is not None
        assert fetched.id == created.id
        assert fetched.current_value == 0
        assert fetched.padding_length == 5
        assert fetched.reset_on_year_change is True

    @pytest.mark.asyncio
    async def test_get_by_key_null_year(self, async_session: AsyncSession):
        repo = CounterRepository(async_session, tenant_id="t1")
        await repo.create(document_type_id="inv", series="", year=None, created_by="alice")

        assert await repo.get_by_key("inv", "", None) is not None
        assert await repo.get_by_key("inv", "", 2024) is None

    @pytest.mark.asyncio
    async def test_tenant_isolation(self, async_session: AsyncSession):
        await CounterRepository(async_session, tenant_id="t1").create(
            document_type_id="inv", series="", year=2024, created_by="alice"
        )
        other = CounterRepository(async_session, tenant_id="t2")
        assert await other.get_by_key("inv", "", 2024) is None
        assert await other.list_all() == []

    @pytest.mark.asyncio
    async def test_duplicate_live_key_rejected(self, async_session: AsyncSession):
        repo = CounterRepository(async_session, tenant_id="t1")
        await repo.create(document_type_id="inv", series="A", year=2024, created_by="alice")
        with pytest.raises(CounterAlreadyExistsError):
            await repo.create(document_type_id="inv", series="A", year=2024, created_by="bob")

    @pytest.mark.asyncio
    async def test_duplicate_null_year_rejected(self, async_session: AsyncSession):
        repo = CounterRepository(async_session, tenant_id="t1")
        await repo.create(document_type_id="inv", series="A", year=None, created_by="alice")
        with pytest.raises(CounterAlreadyExistsError):
            await repo.create(document_type_id="inv", series="A", year=None, created_by="bob")

    @pytest.mark.asyncio
    async def test_soft_delete_frees_key(self, async_session: AsyncSession):
        repo = CounterRepository(async_session, tenant_id="t1")
        first = await repo.create(document_type_id="inv", series="A", year=2024, created_by="alice")

        assert await repo.soft_delete(first.id, "alice") is True
        assert first.is_deleted is True
        assert first.deleted_by == "alice"
        assert await repo.get_by_id(first.id) is None

        second = await repo.create(document_type_id="inv", series="A", year=2024, created_by="alice")
        assert second.id != first.id

    @pytest.mark.asyncio
    async def test_soft_delete_missing(self, async_session: AsyncSession):
        repo = CounterRepository(async_session, tenant_id="t1")
        assert await repo.soft_delete("nope", "alice") is False

    @pytest.mark.asyncio
    async def test_update_sets_modified_columns(self, async_session: AsyncSession):
        repo = CounterRepository(async_session, tenant_id="t1")
        counter = await repo.create(document_type_id="inv", series="A", year=2024, created_by="alice")

        updated = await repo.update(counter.id, {"prefix": "INV", "padding_length": 3}, "bob")
        assert updated is not None
        assert updated.prefix == "INV"
        assert updated.padding_length == 3
        assert updated.modified_by == "bob"
        assert updated.modified_at is not None

    @pytest.mark.asyncio
    async def test_update_missing_returns_none(self, async_session: AsyncSession):
        repo = CounterRepository(async_session, tenant_id="t1")
        assert await repo.update("nope", {"prefix": "X"}, "bob") is None

    @pytest.mark.asyncio
    async def test_find_for_allocation_prefers_current_year(self, async_session: AsyncSession):
        repo = CounterRepository(async_session, tenant_id="t1")
        await repo.create(document_type_id="inv", series="A", year=2023, created_by="a", current_value=40)
        current = await repo.create(document_type_id="inv", series="A", year=2024, created_by="a")

        found = await repo.find_for_allocation("inv", "A", 2024)
        assert found is not None
        assert found.id == current.id

    @pytest.mark.asyncio
    async def test_find_for_allocation_falls_back_to_latest_year(self, async_session: AsyncSession):
        repo = CounterRepository(async_session, tenant_id="t1")
        await repo.create(document_type_id="inv", series="A", year=None, created_by="a")
        await repo.create(document_type_id="inv", series="A", year=2022, created_by="a")
        latest = await repo.create(document_type_id="inv", series="A", year=2023, created_by="a")

        found = await repo.find_for_allocation("inv", "A", 2024)
        assert found is not None
        assert found.id == latest.id

    @pytest.mark.asyncio
    async def test_find_for_allocation_skips_later_years(self, async_session: AsyncSession):
        repo = CounterRepository(async_session, tenant_id="t1")
        earlier = await repo.create(document_type_id="inv", series="A", year=2023, created_by="a")
        await repo.create(document_type_id="inv", series="A", year=2025, created_by="a")

        found = await repo.find_for_allocation("inv", "A", 2024)
        assert found is not None
        assert found.id == earlier.id

        await repo.create(document_type_id="ord", series="", year=2026, created_by="a")
        assert await repo.find_for_allocation("ord", "", 2024) is None

    @pytest.mark.asyncio
    async def test_find_for_allocation_series_is_part_of_key(self, async_session: AsyncSession):
        repo = CounterRepository(async_session, tenant_id="t1")
        await repo.create(document_type_id="inv", series="A", year=2024, created_by="a")
        assert await repo.find_for_allocation("inv", "B", 2024) is None

    @pytest.mark.asyncio
    async def test_list_for_document_type(self, async_session: AsyncSession):
        repo = CounterRepository(async_session, tenant_id="t1")
        await repo.create(document_type_id="inv", series="A", year=2024, created_by="a")
        await repo.create(document_type_id="inv", series="B", year=2024, created_by="a")
        await repo.create(document_type_id="ddt", series="", year=2024, created_by="a")

        counters = await repo.list_for_document_type("inv")
        assert [c.series for c in counters] == ["A", "B"]
        assert len(await repo.list_all()) == 3


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


class TestDocumentRepository:
    @pytest.mark.asyncio
    async def test_create_in_draft(self, async_session: AsyncSession):
        repo = DocumentRepository(async_session, tenant_id="t1")
        document = await repo.create(created_by="alice", document_type_id="inv", business_party_id="p1")

        assert document.status == "DRAFT"
        assert document.version == 1
        assert document.number is None
        assert await repo.get_status(document.id) == "DRAFT"

    @pytest.mark.asyncio
    async def test_rows_are_ordered_and_loaded(self, async_session: AsyncSession):
        repo = DocumentRepository(async_session, tenant_id="t1")
        document = await repo.create(created_by="alice")
        await repo.add_row(document.id, description="first", quantity=2, unit_price="9.99")
        await repo.add_row(document.id, description="second", unit_price="1")
        async_session.expunge_all()

        loaded = await repo.get(document.id, with_rows=True)
        assert loaded is not None
        assert [row.description for row in loaded.rows] == ["first", "second"]
        assert [row.sort_order for row in loaded.rows] == [0, 1]

    @pytest.mark.asyncio
    async def test_get_missing(self, async_session: AsyncSession):
        repo = DocumentRepository(async_session, tenant_id="t1")
        assert await repo.get("nope") is None
        assert await repo.get_status("nope") is None

    @pytest.mark.asyncio
    async def test_other_tenant_cannot_see_document(self, async_session: AsyncSession):
        document = await DocumentRepository(async_session, tenant_id="t1").create(created_by="alice")
        assert await DocumentRepository(async_session, tenant_id="t2").get(document.id) is None

    @pytest.mark.asyncio
    async def test_assign_number_bumps_version(self, async_session: AsyncSession):
        repo = DocumentRepository(async_session, tenant_id="t1")
        document = await repo.create(created_by="alice")

        numbered = await repo.assign_number(document.id, "INV/2024/00001", "bob")
        assert numbered is not None
        assert numbered.number == "INV/2024/00001"
        assert numbered.modified_by == "bob"
        assert numbered.version == 2

    @pytest.mark.asyncio
    async def test_assign_number_missing(self, async_session: AsyncSession):
        repo = DocumentRepository(async_session, tenant_id="t1")
        assert await repo.assign_number("nope", "X", "bob") is None


# ---------------------------------------------------------------------------
# Status history
# ---------------------------------------------------------------------------


class TestStatusHistoryRepository:
    @pytest.mark.asyncio
    async def test_most_recent_first(self, async_session: AsyncSession):
        document = await DocumentRepository(async_session, tenant_id="t1").create(created_by="alice")
        history = StatusHistoryRepository(async_session, tenant_id="t1")
        start = datetime(2024, 1, 1, tzinfo=UTC)

        await history.append(
            document_id=document.id, from_status="DRAFT", to_status="OPEN", changed_by="a", changed_at=start
        )
        await history.append(
            document_id=document.id,
            from_status="OPEN",
            to_status="DRAFT",
            changed_by="a",
            changed_at=start + timedelta(minutes=1),
        )
        await history.append(
            document_id=document.id,
            from_status="DRAFT",
            to_status="CANCELLED",
            changed_by="a",
            changed_at=start + timedelta(minutes=2),
        )

        entries = await history.list_for_document(document.id)
        assert [e.to_status for e in entries] == ["CANCELLED", "DRAFT", "OPEN"]

    @pytest.mark.asyncio
    async def test_timestamp_ties_broken_by_insertion_order(self, async_session: AsyncSession):
        document = await DocumentRepository(async_session, tenant_id="t1").create(created_by="alice")
        history = StatusHistoryRepository(async_session, tenant_id="t1")
        moment = datetime(2024, 1, 1, tzinfo=UTC)

        await history.append(
            document_id=document.id, from_status="DRAFT", to_status="OPEN", changed_by="a", changed_at=moment
        )
        await history.append(
            document_id=document.id, from_status="OPEN", to_status="DRAFT", changed_by="a", changed_at=moment
        )

        entries = await history.list_for_document(document.id)
        assert [e.to_status for e in entries] == ["DRAFT", "OPEN"]

    @pytest.mark.asyncio
    async def test_update_refused(self, async_session: AsyncSession):
        document = await DocumentRepository(async_session, tenant_id="t1").create(created_by="alice")
        entry = await StatusHistoryRepository(async_session, tenant_id="t1").append(
            document_id=document.id, from_status="DRAFT", to_status="OPEN", changed_by="a"
        )

        entry.reason = "rewritten"
        with pytest.raises(AppendOnlyViolationError) as exc_info:
            await async_session.flush()
        assert exc_info.value.operation == "UPDATE"
        assert exc_info.value.table_name == "document_status_history"

    @pytest.mark.asyncio
    async def test_delete_refused(self, async_session: AsyncSession):
        document = await DocumentRepository(async_session, tenant_id="t1").create(created_by="alice")
        entry = await StatusHistoryRepository(async_session, tenant_id="t1").append(
            document_id=document.id, from_status="DRAFT", to_status="OPEN", changed_by="a"
        )

        await async_session.delete(entry)
        with pytest.raises(AppendOnlyViolationError) as exc_info:
            await async_session.flush()
        assert exc_info.value.operation == "DELETE"


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------


class TestAuditRepository:
    @pytest.mark.asyncio
    async def test_log_and_query(self, async_session: AsyncSession):
        repo = AuditRepository(async_session, tenant_id="t1")
        entry_id = await repo.log(
            actor="alice",
            action="COUNTER_CREATED",
            entity_type="document_counter",
            entity_id="c1",
            metadata={"series": "A"},
        )
        assert len(entry_id) == 32  # uuid4 hex

        entries = await repo.query(action="COUNTER_CREATED")
        assert len(entries) == 1
        assert entries[0].metadata_json == {"series": "A"}
        assert await repo.query(entity_id="other") == []

    @pytest.mark.asyncio
    async def test_update_refused(self, async_session: AsyncSession):
        repo = AuditRepository(async_session, tenant_id="t1")
        await repo.log(actor="alice", action="A1")
        (entry,) = await repo.query()

        entry.actor = "mallory"
        with pytest.raises(AppendOnlyViolationError):
            await async_session.flush()
