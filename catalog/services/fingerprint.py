"""Source-independent identity of a scraped event."""

import hashlib
from dataclasses import dataclass
from datetime import datetime

from catalog.models import EventKind
from catalog.services.countries import normalize_country
from catalog.services.locks import lock_key
from catalog.services.text import normalize_name, normalize_title

FINGERPRINT_VERSION = "v1"


@dataclass(frozen=True)
class Fingerprint:
    digest: str
    kind: EventKind

    @property
    def lock_key(self) -> int:
        return lock_key(self.digest)

    def __str__(self) -> str:
        return self.digest


def _country_part(country) -> str:
    if not isinstance(country, str):
        return ""
    # "UK", "England" and "United Kingdom" fingerprint alike
    return normalize_country(country) or normalize_name(country)


def resolve_kind(event_data: dict) -> EventKind:
    """Kind from the scraper's hints: explicit type first, then recurrence info."""
    signal = event_data.get("event_type") or event_data.get("kind")
    if signal:
        return EventKind.from_signal(signal)
    if event_data.get("recurrence_rule"):
        return EventKind.recurring
    return EventKind.single


def compute_fingerprint(
    title: str,
    venue_data: dict | None,
    kind: EventKind,
    starts_at: datetime | None = None,
    city: str | None = None,
) -> Fingerprint:
    """SHA-256 over normalized title and venue identity.

    ``city`` is the stored spelling of the venue's city when it is already
    known (so "Warszawa" and "Warsaw" agree); it defaults to the raw
    ``venue_data`` value.

    Only ``single`` events add a time bucket (their UTC calendar day): the
    same title at the same venue on another day is another event. Every
    other kind folds all its dates into one canonical event.
    """
    venue_data = venue_data or {}
    if city is None:
        city = venue_data.get("city_name") or venue_data.get("city")
    country = venue_data.get("country_name") or venue_data.get("country")
    parts = [
        FINGERPRINT_VERSION,
        normalize_title(title),
        normalize_title(venue_data.get("name")),
        normalize_name(city if isinstance(city, str) else None),
        _country_part(country),
        "single" if kind.is_time_bucketed else "series",
    ]
    if kind.is_time_bucketed and starts_at is not None:
        parts.append(starts_at.date().isoformat())
    digest = hashlib.sha256("\x1f".join(parts).encode("utf-8")).hexdigest()
    return Fingerprint(digest=digest, kind=kind)
