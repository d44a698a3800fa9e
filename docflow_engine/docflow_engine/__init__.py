"""docflow engine: gapless document numbering and a status lifecycle state machine."""

__version__ = "0.1.0"
