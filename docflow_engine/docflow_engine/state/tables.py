"""SQLAlchemy 2.0 ORM table definitions for the docflow state store.

All tables use the ``Mapped`` / ``mapped_column`` declaration style.  The
``Base`` declarative base is exported for use by Alembic migrations and the
repository layer.

Append-only tables (status history, audit log) refuse ORM-level UPDATE and
DELETE through mapper events; the repositories expose no such operations.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    event,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from docflow_engine.errors import AppendOnlyViolationError

# Cross-dialect JSON type: JSONB on PostgreSQL, plain JSON on SQLite.
_JsonType = JSONB().with_variant(JSON(), "sqlite")

_STATUS_VALUES = "('DRAFT', 'OPEN', 'CLOSED', 'CANCELLED')"


def _utcnow() -> datetime:
    """Return the current UTC timestamp (timezone-aware)."""
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Declarative base
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    """Shared declarative base for all docflow tables."""


# ---------------------------------------------------------------------------
# Document counters
# ---------------------------------------------------------------------------


class CounterTable(Base):
    """Allocation state of one numbering stream.

    Identity key is ``(tenant_id, document_type_id, series, year)``; a NULL
    year marks a stream that is not year-scoped.
    """

    __tablename__ = "document_counters"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    document_type_id: Mapped[str] = mapped_column(String(64), nullable=False)
    series: Mapped[str] = mapped_column(String(10), nullable=False, default="")
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    current_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    prefix: Mapped[str | None] = mapped_column(String(10), nullable=True)
    padding_length: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    format_pattern: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reset_on_year_change: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notes: Mapped[str | None] = mapped_column(String(200), nullable=True)
    created_by: Mapped[str] = mapped_column(String(256), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    modified_by: Mapped[str | None] = mapped_column(String(256), nullable=True)
    modified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deleted_by: Mapped[str | None] = mapped_column(String(256), nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("current_value >= 0", name="ck_document_counters_value_non_negative"),
        CheckConstraint("padding_length BETWEEN 1 AND 10", name="ck_document_counters_padding_range"),
        Index("ix_document_counters_tenant_type", "tenant_id", "document_type_id"),
    )


# At most one live counter per key.  NULL years are folded to 0 so that two
# non-year-scoped streams for the same key also collide.
Index(
    "uq_document_counters_live_key",
    CounterTable.tenant_id,
    CounterTable.document_type_id,
    CounterTable.series,
    func.coalesce(CounterTable.year, 0),
    unique=True,
    postgresql_where=CounterTable.is_deleted.is_(False),
    sqlite_where=CounterTable.is_deleted.is_(False),
)


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


class DocumentTable(Base):
    """Document header, restricted to the fields the lifecycle governs.

    ``version`` is the optimistic-concurrency token: every UPDATE checks and
    bumps it, and a mismatch raises ``StaleDataError`` at flush time.
    """

    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    document_type_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    series: Mapped[str] = mapped_column(String(10), nullable=False, default="")
    number: Mapped[str | None] = mapped_column(String(30), nullable=True)
    business_party_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="DRAFT")
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_by: Mapped[str] = mapped_column(String(256), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    modified_by: Mapped[str | None] = mapped_column(String(256), nullable=True)
    modified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    rows: Mapped[list[DocumentRowTable]] = relationship(
        back_populates="document",
        lazy="raise",
        order_by="DocumentRowTable.sort_order",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(f"status IN {_STATUS_VALUES}", name="ck_documents_status"),
        Index("ix_documents_tenant", "tenant_id"),
        Index("ix_documents_tenant_type_number", "tenant_id", "document_type_id", "number"),
    )


class DocumentRowTable(Base):
    """A priced line belonging to one document."""

    __tablename__ = "document_rows"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    document_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False
    )
    description: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    quantity: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=Decimal("1"))
    unit_price: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    line_discount: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=Decimal("0"))
    vat_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=Decimal("0"))
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    document: Mapped[DocumentTable] = relationship(back_populates="rows", lazy="raise")

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_document_rows_quantity"),
        CheckConstraint("line_discount BETWEEN 0 AND 100", name="ck_document_rows_discount"),
        Index("ix_document_rows_document", "document_id"),
    )


# ---------------------------------------------------------------------------
# Status history (append-only)
# ---------------------------------------------------------------------------


class StatusHistoryTable(Base):
    """One immutable record per executed status transition."""

    __tablename__ = "document_status_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    document_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("documents.id", ondelete="RESTRICT"), nullable=False
    )
    from_status: Mapped[str] = mapped_column(String(16), nullable=False)
    to_status: Mapped[str] = mapped_column(String(16), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    changed_by: Mapped[str] = mapped_column(String(256), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)

    __table_args__ = (
        CheckConstraint(f"from_status IN {_STATUS_VALUES}", name="ck_status_history_from"),
        CheckConstraint(f"to_status IN {_STATUS_VALUES}", name="ck_status_history_to"),
        Index("ix_status_history_document", "tenant_id", "document_id", "changed_at"),
    )


# ---------------------------------------------------------------------------
# Audit log (append-only)
# ---------------------------------------------------------------------------


class AuditLogTable(Base):
    """Change-tracking records: which entity changed, how, and by whom."""

    __tablename__ = "audit_log"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    actor: Mapped[str] = mapped_column(String(256), nullable=False)
    action: Mapped[str] = mapped_column(String(128), nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(512), nullable=True)
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column(_JsonType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        Index("ix_audit_tenant_created", "tenant_id", "created_at"),
        Index("ix_audit_entity", "tenant_id", "entity_type", "entity_id"),
    )


def _refuse_mutation(operation: str):  # noqa: ANN202
    def _listener(mapper: Any, connection: Any, target: Any) -> None:
        raise AppendOnlyViolationError(target.__tablename__, operation)

    return _listener


for _table in (StatusHistoryTable, AuditLogTable):
    event.listen(_table, "before_update", _refuse_mutation("UPDATE"))
    event.listen(_table, "before_delete", _refuse_mutation("DELETE"))
