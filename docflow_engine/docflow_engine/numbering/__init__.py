"""Document numbering: counter allocation and number formatting."""

from docflow_engine.numbering.allocator import CounterAllocator
from docflow_engine.numbering.formatter import format_document_number, pad_number

__all__ = [
    "CounterAllocator",
    "format_document_number",
    "pad_number",
]
