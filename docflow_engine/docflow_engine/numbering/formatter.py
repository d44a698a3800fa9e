"""Render a counter value as a document number.

Two modes:

* **Pattern** -- when the counter carries a non-blank format pattern, the
  literal placeholders ``{PREFIX}``, ``{SERIES}``, ``{YEAR}`` and
  ``{NUMBER}`` are substituted and the result is returned verbatim.
* **Default** -- otherwise the non-blank parts (prefix, series, year, padded
  number) are joined with ``/``, e.g. ``INV/A/2024/00007``.
"""

from __future__ import annotations

from docflow_engine.models.counter import MAX_PADDING_LENGTH, MIN_PADDING_LENGTH, CounterSnapshot

PLACEHOLDER_PREFIX = "{PREFIX}"
PLACEHOLDER_SERIES = "{SERIES}"
PLACEHOLDER_YEAR = "{YEAR}"
PLACEHOLDER_NUMBER = "{NUMBER}"


def pad_number(value: int, padding_length: int) -> str:
    """Zero-pad *value* on the left to *padding_length* digits."""
    if not MIN_PADDING_LENGTH <= padding_length <= MAX_PADDING_LENGTH:
        raise ValueError(
            f"padding_length must be between {MIN_PADDING_LENGTH} and {MAX_PADDING_LENGTH}, got {padding_length}"
        )
    return str(value).rjust(padding_length, "0")


def format_document_number(snapshot: CounterSnapshot) -> str:
    number = pad_number(snapshot.current_value, snapshot.padding_length)
    year = str(snapshot.year) if snapshot.year is not None else ""

    if snapshot.format_pattern and snapshot.format_pattern.strip():
        return (
            snapshot.format_pattern.replace(PLACEHOLDER_PREFIX, snapshot.prefix or "")
            .replace(PLACEHOLDER_SERIES, snapshot.series or "")
            .replace(PLACEHOLDER_YEAR, year)
            .replace(PLACEHOLDER_NUMBER, number)
        )

    parts = [part for part in (snapshot.prefix, snapshot.series, year) if part and part.strip()]
    parts.append(number)
    return "/".join(parts)
