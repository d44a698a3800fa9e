"""Document lifecycle models.

Snapshots are detached, immutable views of stored documents.  The transition
rules operate on them exclusively, so the rules can be exercised without a
datastore.
"""

from __future__ import annotations

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field

_CENT = Decimal("0.01")


def _round_money(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


class DocumentStatus(str, Enum):
    """Lifecycle status of a document."""

    DRAFT = "DRAFT"
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    CANCELLED = "CANCELLED"


class TransitionErrorKind(str, Enum):
    """Stable identifiers for rejected status transitions."""

    INVALID_TRANSITION = "INVALID_TRANSITION"
    MISSING_BUSINESS_PARTY = "MISSING_BUSINESS_PARTY"
    MISSING_DOCUMENT_TYPE = "MISSING_DOCUMENT_TYPE"
    NO_ROWS = "NO_ROWS"
    ZERO_TOTAL = "ZERO_TOTAL"
    MISSING_NUMBER = "MISSING_NUMBER"
    CANNOT_CANCEL_CLOSED = "CANNOT_CANCEL_CLOSED"


class TransitionValidation(BaseModel):
    """Tagged outcome of a transition check: success, or (message, kind)."""

    model_config = ConfigDict(frozen=True)

    is_valid: bool
    message: str | None = None
    error_kind: TransitionErrorKind | None = None

    @classmethod
    def success(cls) -> TransitionValidation:
        return cls(is_valid=True)

    @classmethod
    def fail(cls, message: str, kind: TransitionErrorKind) -> TransitionValidation:
        return cls(is_valid=False, message=message, error_kind=kind)


class DocumentRowSnapshot(BaseModel):
    """A priced line of a document."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    description: str = ""
    quantity: Decimal = Field(default=Decimal("1"), ge=0)
    unit_price: Decimal = Decimal("0")
    line_discount: Decimal = Field(default=Decimal("0"), ge=0, le=100, description="Discount in percent.")
    vat_rate: Decimal = Field(default=Decimal("0"), ge=0, description="VAT rate in percent.")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def line_total(self) -> Decimal:
        """Row total after discount; the discount never exceeds the subtotal."""
        subtotal = self.unit_price * self.quantity
        discount = min(subtotal * self.line_discount / Decimal(100), max(subtotal, Decimal(0)))
        return _round_money(subtotal - discount)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def vat_total(self) -> Decimal:
        return _round_money(self.line_total * self.vat_rate / Decimal(100))


class DocumentSnapshot(BaseModel):
    """The subset of a document the lifecycle rules need."""

    model_config = ConfigDict(frozen=True)

    id: str
    status: DocumentStatus = DocumentStatus.DRAFT
    number: str | None = None
    series: str = ""
    business_party_id: str | None = None
    document_type_id: str | None = None
    rows: tuple[DocumentRowSnapshot, ...] = ()
    closed_at: datetime | None = None
    version: int = 1

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_gross_amount(self) -> Decimal:
        return sum((row.line_total + row.vat_total for row in self.rows), Decimal("0"))


class StatusHistoryRecord(BaseModel):
    """Read model of one executed transition."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    document_id: str
    from_status: DocumentStatus
    to_status: DocumentStatus
    reason: str | None = None
    changed_by: str
    changed_at: datetime
    ip_address: str | None = None
    user_agent: str | None = None
