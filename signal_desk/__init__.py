"""Signal Desk: per-user signal selection for daily briefings."""

__version__ = "0.1.0"
