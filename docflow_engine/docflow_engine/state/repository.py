"""Repository classes providing access to the docflow state store.

Each repository takes an ``AsyncSession`` at construction time and operates
within the caller's transaction boundary.  All writes call ``session.flush()``
so that generated defaults are populated; the caller is responsible for calling
``session.commit()`` (or relying on the ``get_session`` context manager).

Every query is scoped to the repository's ``tenant_id``.
"""

from __future__ import annotations

import hashlib
import logging
import uuid
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import or_, select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from docflow_engine.errors import CounterAlreadyExistsError
from docflow_engine.state.database import dialect_name
from docflow_engine.state.tables import (
    AuditLogTable,
    CounterTable,
    DocumentRowTable,
    DocumentTable,
    StatusHistoryTable,
)

logger = logging.getLogger(__name__)


def advisory_lock_id(*parts: str) -> int:
    """Derive a signed 64-bit advisory lock id from *parts*, stable across processes."""
    digest = hashlib.sha256("\x1f".join(parts).encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


async def acquire_advisory_xact_lock(session: AsyncSession, *parts: str) -> None:
    """Take a transaction-scoped advisory lock on PostgreSQL.

    Released automatically at commit or rollback.  On SQLite this is a no-op:
    the engine has a single writer and callers serialise in-process.
    """
    if dialect_name(session) != "postgresql":
        return
    await session.execute(
        text("SELECT pg_advisory_xact_lock(:lock_id)"),
        {"lock_id": advisory_lock_id(*parts)},
    )


# ---------------------------------------------------------------------------
# Counters
# ---------------------------------------------------------------------------


class CounterRepository:
    """Access to the ``document_counters`` table.

    Only live (not soft-deleted) rows are ever returned.
    """

    def __init__(self, session: AsyncSession, tenant_id: str = "default") -> None:
        self._session = session
        self._tenant_id = tenant_id

    def _live(self):  # noqa: ANN202
        return select(CounterTable).where(
            CounterTable.tenant_id == self._tenant_id,
            CounterTable.is_deleted.is_(False),
        )

    async def get_by_id(self, counter_id: str) -> CounterTable | None:
        stmt = self._live().where(CounterTable.id == counter_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_key(
        self,
        document_type_id: str,
        series: str,
        year: int | None,
    ) -> CounterTable | None:
        """Fetch the live counter for an exact key; ``year=None`` matches NULL."""
        year_clause = CounterTable.year.is_(None) if year is None else CounterTable.year == year
        stmt = self._live().where(
            CounterTable.document_type_id == document_type_id,
            CounterTable.series == series,
            year_clause,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_for_allocation(
        self,
        document_type_id: str,
        series: str,
        current_year: int,
    ) -> CounterTable | None:
        """Locate the counter an allocation should advance, locking the row.

        Prefers the row for *current_year*; otherwise falls back to the most
        recent live row for ``(document_type_id, series)`` whose year is
        NULL or earlier than *current_year*.  Rows configured for a later
        year are never returned.  The caller decides whether a stale year
        resets the stream.
        """
        base = self._live().where(
            CounterTable.document_type_id == document_type_id,
            CounterTable.series == series,
        )

        stmt = base.where(CounterTable.year == current_year).with_for_update()
        result = await self._session.execute(stmt)
        row = result.scalar_one_or_none()
        if row is not None:
            return row

        stmt = (
            base.where(or_(CounterTable.year.is_(None), CounterTable.year < current_year))
            .order_by(
                CounterTable.year.is_(None),
                CounterTable.year.desc(),
                CounterTable.created_at.desc(),
            )
            .limit(1)
            .with_for_update()
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_all(self) -> list[CounterTable]:
        stmt = self._live().order_by(
            CounterTable.document_type_id,
            CounterTable.series,
            CounterTable.year.desc(),
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_for_document_type(self, document_type_id: str) -> list[CounterTable]:
        stmt = (
            self._live()
            .where(CounterTable.document_type_id == document_type_id)
            .order_by(CounterTable.series, CounterTable.year.desc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def create(
        self,
        *,
        document_type_id: str,
        series: str,
        year: int | None,
        created_by: str,
        current_value: int = 0,
        prefix: str | None = None,
        padding_length: int = 5,
        format_pattern: str | None = None,
        reset_on_year_change: bool = True,
        notes: str | None = None,
    ) -> CounterTable:
        """Insert a new counter.

        Raises
        ------
        CounterAlreadyExistsError
            If the live-key unique index rejects the row.
        """
        row = CounterTable(
            id=uuid.uuid4().hex,
            tenant_id=self._tenant_id,
            document_type_id=document_type_id,
            series=series,
            year=year,
            current_value=current_value,
            prefix=prefix,
            padding_length=padding_length,
            format_pattern=format_pattern,
            reset_on_year_change=reset_on_year_change,
            notes=notes,
            created_by=created_by,
            created_at=datetime.now(UTC),
        )
        self._session.add(row)
        try:
            await self._session.flush()
        except IntegrityError as exc:
            raise CounterAlreadyExistsError(document_type_id, series, year) from exc
        return row

    async def save(self, row: CounterTable) -> CounterTable:
        """Flush pending changes made to *row*."""
        await self._session.flush()
        return row

    async def update(
        self,
        counter_id: str,
        changes: dict[str, Any],
        modified_by: str,
    ) -> CounterTable | None:
        """Apply configuration *changes*; returns ``None`` when not found."""
        row = await self.get_by_id(counter_id)
        if row is None:
            return None
        for field, value in changes.items():
            setattr(row, field, value)
        row.modified_by = modified_by
        row.modified_at = datetime.now(UTC)
        await self._session.flush()
        return row

    async def soft_delete(self, counter_id: str, deleted_by: str) -> bool:
        row = await self.get_by_id(counter_id)
        if row is None:
            return False
        now = datetime.now(UTC)
        row.is_deleted = True
        row.deleted_by = deleted_by
        row.deleted_at = now
        row.modified_by = deleted_by
        row.modified_at = now
        await self._session.flush()
        return True


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


class DocumentRepository:
    """Access to ``documents`` and their ``document_rows``."""

    def __init__(self, session: AsyncSession, tenant_id: str = "default") -> None:
        self._session = session
        self._tenant_id = tenant_id

    async def create(
        self,
        *,
        created_by: str,
        document_type_id: str | None = None,
        series: str = "",
        business_party_id: str | None = None,
        number: str | None = None,
    ) -> DocumentTable:
        """Insert a new document in Draft status."""
        row = DocumentTable(
            id=uuid.uuid4().hex,
            tenant_id=self._tenant_id,
            document_type_id=document_type_id,
            series=series,
            business_party_id=business_party_id,
            number=number,
            status="DRAFT",
            created_by=created_by,
            created_at=datetime.now(UTC),
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def add_row(
        self,
        document_id: str,
        *,
        quantity: Decimal | int | str = Decimal("1"),
        unit_price: Decimal | int | str = Decimal("0"),
        line_discount: Decimal | int | str = Decimal("0"),
        vat_rate: Decimal | int | str = Decimal("0"),
        description: str = "",
    ) -> DocumentRowTable:
        existing = await self._session.execute(
            select(DocumentRowTable.sort_order)
            .where(DocumentRowTable.document_id == document_id)
            .order_by(DocumentRowTable.sort_order.desc())
            .limit(1)
        )
        last = existing.scalar_one_or_none()
        row = DocumentRowTable(
            id=uuid.uuid4().hex,
            tenant_id=self._tenant_id,
            document_id=document_id,
            description=description,
            quantity=Decimal(str(quantity)),
            unit_price=Decimal(str(unit_price)),
            line_discount=Decimal(str(line_discount)),
            vat_rate=Decimal(str(vat_rate)),
            sort_order=0 if last is None else last + 1,
            created_at=datetime.now(UTC),
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(
        self,
        document_id: str,
        *,
        with_rows: bool = False,
        for_update: bool = False,
    ) -> DocumentTable | None:
        """Fetch a live document, optionally eager-loading its live rows."""
        stmt = select(DocumentTable).where(
            DocumentTable.tenant_id == self._tenant_id,
            DocumentTable.id == document_id,
            DocumentTable.is_deleted.is_(False),
        )
        if with_rows:
            stmt = stmt.options(selectinload(DocumentTable.rows))
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_status(self, document_id: str) -> str | None:
        """Load only the status column of a live document."""
        stmt = select(DocumentTable.status).where(
            DocumentTable.tenant_id == self._tenant_id,
            DocumentTable.id == document_id,
            DocumentTable.is_deleted.is_(False),
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def assign_number(
        self,
        document_id: str,
        number: str,
        modified_by: str,
    ) -> DocumentTable | None:
        row = await self.get(document_id)
        if row is None:
            return None
        row.number = number
        row.modified_by = modified_by
        row.modified_at = datetime.now(UTC)
        await self._session.flush()
        return row

    async def save(self, row: DocumentTable) -> DocumentTable:
        """Flush pending changes; a stale ``version`` raises ``StaleDataError``."""
        await self._session.flush()
        return row


# ---------------------------------------------------------------------------
# Status history (append-only)
# ---------------------------------------------------------------------------


class StatusHistoryRepository:
    """Append and read status-transition records.  No update or delete."""

    def __init__(self, session: AsyncSession, tenant_id: str = "default") -> None:
        self._session = session
        self._tenant_id = tenant_id

    async def append(
        self,
        *,
        document_id: str,
        from_status: str,
        to_status: str,
        changed_by: str,
        reason: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        changed_at: datetime | None = None,
    ) -> StatusHistoryTable:
        row = StatusHistoryTable(
            tenant_id=self._tenant_id,
            document_id=document_id,
            from_status=from_status,
            to_status=to_status,
            reason=reason,
            changed_by=changed_by,
            changed_at=changed_at or datetime.now(UTC),
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def list_for_document(self, document_id: str) -> list[StatusHistoryTable]:
        """Return entries most recent first; insertion order breaks timestamp ties."""
        stmt = (
            select(StatusHistoryTable)
            .where(
                StatusHistoryTable.tenant_id == self._tenant_id,
                StatusHistoryTable.document_id == document_id,
            )
            .order_by(StatusHistoryTable.changed_at.desc(), StatusHistoryTable.id.desc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Audit log (append-only)
# ---------------------------------------------------------------------------


class AuditRepository:
    """Append-only change-tracking log."""

    def __init__(self, session: AsyncSession, *, tenant_id: str = "default") -> None:
        self._session = session
        self._tenant_id = tenant_id

    async def log(
        self,
        *,
        actor: str,
        action: str,
        entity_type: str | None = None,
        entity_id: str | None = None,
        metadata: dict | None = None,
    ) -> str:
        """Write an audit entry. Returns the entry ID."""
        entry_id = uuid.uuid4().hex
        row = AuditLogTable(
            id=entry_id,
            tenant_id=self._tenant_id,
            actor=actor,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            metadata_json=metadata,
            created_at=datetime.now(UTC),
        )
        self._session.add(row)
        await self._session.flush()

        logger.info(
            "Audit: tenant=%s actor=%s action=%s entity=%s/%s",
            self._tenant_id,
            actor,
            action,
            entity_type or "-",
            entity_id or "-",
        )
        return entry_id

    async def query(
        self,
        *,
        action: str | None = None,
        entity_type: str | None = None,
        entity_id: str | None = None,
        limit: int = 50,
    ) -> list[AuditLogTable]:
        """Query audit entries, most recent first.  All filters are optional."""
        stmt = select(AuditLogTable).where(AuditLogTable.tenant_id == self._tenant_id)

        if action is not None:
            stmt = stmt.where(AuditLogTable.action == action)
        if entity_type is not None:
            stmt = stmt.where(AuditLogTable.entity_type == entity_type)
        if entity_id is not None:
            stmt = stmt.where(AuditLogTable.entity_id == entity_id)

        stmt = stmt.order_by(AuditLogTable.created_at.desc()).limit(limit)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())
