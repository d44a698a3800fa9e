"""Counter configuration and allocation models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

MIN_PADDING_LENGTH = 1
MAX_PADDING_LENGTH = 10


class CounterSnapshot(BaseModel):
    """Everything the number formatter needs from a counter row."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    prefix: str | None = None
    series: str = ""
    year: int | None = None
    current_value: int = Field(default=0, ge=0)
    padding_length: int = Field(default=5, ge=MIN_PADDING_LENGTH, le=MAX_PADDING_LENGTH)
    format_pattern: str | None = None


class CounterCreate(BaseModel):
    """Explicit configuration of a numbering stream."""

    document_type_id: str = Field(..., min_length=1)
    series: str = Field(default="", max_length=10)
    year: int | None = Field(default=None, ge=1900, le=9999)
    current_value: int = Field(default=0, ge=0)
    prefix: str | None = Field(default=None, max_length=10)
    padding_length: int = Field(default=5, ge=MIN_PADDING_LENGTH, le=MAX_PADDING_LENGTH)
    format_pattern: str | None = Field(default=None, max_length=50)
    reset_on_year_change: bool = True
    notes: str | None = Field(default=None, max_length=200)


class CounterUpdate(BaseModel):
    """Configuration fields that may change after creation.

    ``current_value`` is deliberately absent: only allocation moves it.
    Fields left unset are not touched.
    """

    prefix: str | None = Field(default=None, max_length=10)
    padding_length: int | None = Field(default=None, ge=MIN_PADDING_LENGTH, le=MAX_PADDING_LENGTH)
    format_pattern: str | None = Field(default=None, max_length=50)
    reset_on_year_change: bool | None = None
    notes: str | None = Field(default=None, max_length=200)


class Allocation(BaseModel):
    """Result of one number allocation."""

    model_config = ConfigDict(frozen=True)

    counter_id: str
    value: int
    year: int | None
    number: str
