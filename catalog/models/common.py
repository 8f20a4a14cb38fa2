"""Helpers shared by the table models."""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Naive UTC timestamp, the format every datetime column uses."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
