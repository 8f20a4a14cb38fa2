"""SQLModel database models."""

from catalog.models.common import utc_now
from catalog.models.country import Country, CountryBase, CountryRead
from catalog.models.city import City, CityBase, CityRead
from catalog.models.venue import Venue, VenueBase, VenueRead
from catalog.models.source import Source, SourceBase, SourceRead
from catalog.models.event import (
    CanonicalEvent,
    Event,
    EventBase,
    EventKind,
    EventOccurrence,
    EventOccurrenceRead,
    EventSource,
    EventSourceRead,
    IngestOutcome,
)
from catalog.models.ingestion_lock import IngestionLock

__all__ = [
    "utc_now",
    # Locations
    "Country",
    "CountryBase",
    "CountryRead",
    "City",
    "CityBase",
    "CityRead",
    "Venue",
    "VenueBase",
    "VenueRead",
    # Sources
    "Source",
    "SourceBase",
    "SourceRead",
    # Events
    "CanonicalEvent",
    "Event",
    "EventBase",
    "EventKind",
    "EventOccurrence",
    "EventOccurrenceRead",
    "EventSource",
    "EventSourceRead",
    "IngestOutcome",
    # Locking
    "IngestionLock",
]
