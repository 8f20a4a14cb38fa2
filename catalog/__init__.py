"""Event catalog ingestion core."""

__version__ = "1.0.0"
