"""Structured observability records.

Records are plain loguru messages with ``extra["telemetry"]`` set to a
``TelemetryEvent`` value, so any monitoring collaborator can subscribe with a
filtered sink::

    logger.add(sink, filter=lambda r: "telemetry" in r["extra"], serialize=True)
"""

from enum import Enum
from typing import Any

from loguru import logger


class TelemetryEvent(str, Enum):
    city_name_rejected = "city_name_rejected"
    lock_timeout = "lock_timeout"
    duplicate_detected = "duplicate_detected"
    event_created = "event_created"
    occurrence_added = "occurrence_added"
    occurrence_updated = "occurrence_updated"
    constraint_race = "constraint_race"
    external_id_convention_violation = "external_id_convention_violation"
    ingestion_failed = "ingestion_failed"


_LEVELS = {
    TelemetryEvent.city_name_rejected: "WARNING",
    TelemetryEvent.lock_timeout: "WARNING",
    TelemetryEvent.duplicate_detected: "DEBUG",
    TelemetryEvent.event_created: "INFO",
    TelemetryEvent.occurrence_added: "INFO",
    TelemetryEvent.occurrence_updated: "DEBUG",
    TelemetryEvent.constraint_race: "WARNING",
    TelemetryEvent.external_id_convention_violation: "WARNING",
    TelemetryEvent.ingestion_failed: "ERROR",
}


def is_telemetry(record: dict) -> bool:
    """Loguru filter selecting telemetry records."""
    return "telemetry" in record["extra"]


def emit(event: TelemetryEvent, message: str, **fields: Any) -> None:
    """Log a structured telemetry record at the level registered for ``event``."""
    logger.bind(telemetry=event.value, **fields).opt(depth=1).log(_LEVELS[event], message)
