"""Initial schema for the docflow state store.

Creates document_counters, documents, document_rows and
document_status_history.  Every table carries a ``tenant_id`` column with
composite indexes for tenant-scoped lookups.

Revision ID: 001
Revises: None
Create Date: 2026-09-01 00:00:00.000000+00:00

"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_STATUS_VALUES = "('DRAFT', 'OPEN', 'CLOSED', 'CANCELLED')"


def upgrade() -> None:
    # ------------------------------------------------------------------
    # document_counters
    # ------------------------------------------------------------------
    op.create_table(
        "document_counters",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("document_type_id", sa.String(64), nullable=False),
        sa.Column("series", sa.String(10), nullable=False, server_default=""),
        sa.Column("year", sa.Integer(), nullable=True),
        sa.Column("current_value", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("prefix", sa.String(10), nullable=True),
        sa.Column("padding_length", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("format_pattern", sa.String(50), nullable=True),
        sa.Column("reset_on_year_change", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("notes", sa.String(200), nullable=True),
        sa.Column("created_by", sa.String(256), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("modified_by", sa.String(256), nullable=True),
        sa.Column("modified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("deleted_by", sa.String(256), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("current_value >= 0", name="ck_document_counters_value_non_negative"),
        sa.CheckConstraint("padding_length BETWEEN 1 AND 10", name="ck_document_counters_padding_range"),
    )
    op.create_index(
        "ix_document_counters_tenant_type",
        "document_counters",
        ["tenant_id", "document_type_id"],
    )
    op.create_index(
        "uq_document_counters_live_key",
        "document_counters",
        ["tenant_id", "document_type_id", "series", sa.text("coalesce(year, 0)")],
        unique=True,
        postgresql_where=sa.text("is_deleted = false"),
        sqlite_where=sa.text("is_deleted = 0"),
    )

    # ------------------------------------------------------------------
    # documents
    # ------------------------------------------------------------------
    op.create_table(
        "documents",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("document_type_id", sa.String(64), nullable=True),
        sa.Column("series", sa.String(10), nullable=False, server_default=""),
        sa.Column("number", sa.String(30), nullable=True),
        sa.Column("business_party_id", sa.String(64), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="DRAFT"),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_by", sa.String(256), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("modified_by", sa.String(256), nullable=True),
        sa.Column("modified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.CheckConstraint(f"status IN {_STATUS_VALUES}", name="ck_documents_status"),
    )
    op.create_index("ix_documents_tenant", "documents", ["tenant_id"])
    op.create_index(
        "ix_documents_tenant_type_number",
        "documents",
        ["tenant_id", "document_type_id", "number"],
    )

    # ------------------------------------------------------------------
    # document_rows
    # ------------------------------------------------------------------
    op.create_table(
        "document_rows",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column(
            "document_id",
            sa.String(64),
            sa.ForeignKey("documents.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("description", sa.String(200), nullable=False, server_default=""),
        sa.Column("quantity", sa.Numeric(18, 4), nullable=False, server_default="1"),
        sa.Column("unit_price", sa.Numeric(18, 4), nullable=False, server_default="0"),
        sa.Column("line_discount", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("vat_rate", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("quantity >= 0", name="ck_document_rows_quantity"),
        sa.CheckConstraint("line_discount BETWEEN 0 AND 100", name="ck_document_rows_discount"),
    )
    op.create_index("ix_document_rows_document", "document_rows", ["document_id"])

    # ------------------------------------------------------------------
    # document_status_history
    # ------------------------------------------------------------------
    op.create_table(
        "document_status_history",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column(
            "document_id",
            sa.String(64),
            sa.ForeignKey("documents.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("from_status", sa.String(16), nullable=False),
        sa.Column("to_status", sa.String(16), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("changed_by", sa.String(256), nullable=False),
        sa.Column("changed_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.CheckConstraint(f"from_status IN {_STATUS_VALUES}", name="ck_status_history_from"),
        sa.CheckConstraint(f"to_status IN {_STATUS_VALUES}", name="ck_status_history_to"),
    )
    op.create_index(
        "ix_status_history_document",
        "document_status_history",
        ["tenant_id", "document_id", "changed_at"],
    )


def downgrade() -> None:
    op.drop_table("document_status_history")
    op.drop_table("document_rows")
    op.drop_table("documents")
    op.drop_table("document_counters")
