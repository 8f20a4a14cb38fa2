"""External-id conventions shared by all scrapers.

Patterns per event kind:

- single:     ``{source}_{type}_{source_id}``
- multi_date: ``{source}_{type}_{source_id}_{YYYY-MM-DD}``
- showtime:   ``{source}_showtime_{id}`` or ``{source}_{venue}_{movie}_{YYYY-MM-DDTHH:MM:SS}``
- recurring:  ``{source}_{venue_id}``, never with a date suffix, so the
  id survives re-scraping on another day

Ingestion does not reject ids that break these rules; it reports them.
"""

import re
from datetime import date, datetime

from catalog.models import EventKind

SINGLE_PATTERN = re.compile(r"^[a-z][a-z0-9_]*_[a-z]+_[a-zA-Z0-9_-]+$")
MULTI_DATE_PATTERN = re.compile(r"^[a-z][a-z0-9_]*_[a-z]+_[a-zA-Z0-9_-]+_\d{4}-\d{2}-\d{2}$")
SHOWTIME_SIMPLE_PATTERN = re.compile(r"^[a-z][a-z0-9_]*_showtime_[a-zA-Z0-9_-]+$")
SHOWTIME_COMPLEX_PATTERN = re.compile(
    r"^[a-z][a-z0-9_]*_[a-zA-Z0-9_-]+_[a-zA-Z0-9_-]+_\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}"
)
RECURRING_PATTERN = re.compile(r"^[a-z][a-z0-9_]*_[a-zA-Z0-9_-]+$")
DATE_SUFFIX_PATTERN = re.compile(r"_\d{4}-\d{2}-\d{2}$")
TYPED_SINGLE_PATTERN = re.compile(r"_(?:event|activity|show|concert|movie)_")


class ExternalIdError(ValueError):
    pass


def normalize_source(source: str) -> str:
    return source.strip().lower().replace("-", "_").replace(" ", "_")


def _format_date(value) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str) and re.fullmatch(r"\d{4}-\d{2}-\d{2}", value):
        return value
    raise ExternalIdError(f"Invalid date, expected YYYY-MM-DD: {value!r}")


def _format_datetime(value) -> str:
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%dT%H:%M:%S")
    if isinstance(value, str) and re.match(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}", value):
        return value
    raise ExternalIdError(f"Invalid datetime, expected ISO 8601: {value!r}")


def generate_external_id(kind: EventKind | str, source: str, **params) -> str:
    """Build an external id following the convention for ``kind``.

    Required params: single ``type``, ``source_id``; multi_date adds ``date``;
    showtime takes ``showtime_id`` or ``venue_id``, ``movie_id``, ``datetime``;
    recurring takes ``venue_id``.
    """
    kind = EventKind(kind)
    prefix = normalize_source(source)
    try:
        if kind is EventKind.single:
            return f"{prefix}_{params['type']}_{params['source_id']}"
        if kind is EventKind.multi_date:
            return f"{prefix}_{params['type']}_{params['source_id']}_{_format_date(params['date'])}"
        if kind is EventKind.showtime:
            if "showtime_id" in params:
                return f"{prefix}_showtime_{params['showtime_id']}"
            stamp = _format_datetime(params["datetime"])
            return f"{prefix}_{params['venue_id']}_{params['movie_id']}_{stamp}"
        return f"{prefix}_{params['venue_id']}"
    except KeyError as exc:
        raise ExternalIdError(f"Missing parameter {exc.args[0]!r} for {kind.value} external id") from exc


def external_id_problem(kind: EventKind | str, external_id: str | None) -> str | None:
    """Describe how ``external_id`` breaks the convention for ``kind``; None when it conforms."""
    kind = EventKind(kind)
    if not isinstance(external_id, str) or not external_id:
        return "external_id must be a non-empty string"

    if kind is EventKind.single:
        if not SINGLE_PATTERN.match(external_id):
            return "Single event external_id must match pattern: {source}_{type}_{source_id}"
        if DATE_SUFFIX_PATTERN.search(external_id):
            return "Single event external_id must NOT contain a date suffix; use multi_date for dated events"
        return None

    if kind is EventKind.multi_date:
        if not MULTI_DATE_PATTERN.match(external_id):
            return "Multi-date event external_id must match pattern: {source}_{type}_{source_id}_{YYYY-MM-DD}"
        return None

    if kind is EventKind.showtime:
        if SHOWTIME_SIMPLE_PATTERN.match(external_id) or SHOWTIME_COMPLEX_PATTERN.match(external_id):
            return None
        return "Showtime external_id must match pattern: {source}_showtime_{id} or {source}_{venue}_{movie}_{datetime}"

    suffix = DATE_SUFFIX_PATTERN.search(external_id)
    if suffix:
        return f"Recurring event external_id must NOT contain a date suffix. Found: {suffix.group(0)}"
    if not RECURRING_PATTERN.match(external_id):
        return "Recurring event external_id must match pattern: {source}_{venue_id}"
    return None


def is_valid_external_id(kind: EventKind | str, external_id: str | None) -> bool:
    return external_id_problem(kind, external_id) is None


def detect_kind(external_id: str | None) -> EventKind | None:
    """Best guess of the kind behind an id; None when unknown or ambiguous."""
    if not isinstance(external_id, str):
        return None
    if MULTI_DATE_PATTERN.match(external_id):
        return EventKind.multi_date
    if SHOWTIME_SIMPLE_PATTERN.match(external_id) or SHOWTIME_COMPLEX_PATTERN.match(external_id):
        return EventKind.showtime
    if SINGLE_PATTERN.match(external_id):
        # "{source}_{venue_id}" looks the same unless a type word is present
        return EventKind.single if TYPED_SINGLE_PATTERN.search(external_id) else None
    if RECURRING_PATTERN.match(external_id):
        return EventKind.recurring
    return None


def has_date_suffix(external_id: str | None) -> bool:
    return isinstance(external_id, str) and bool(DATE_SUFFIX_PATTERN.search(external_id))


def strip_date_suffix(external_id: str) -> str:
    return DATE_SUFFIX_PATTERN.sub("", external_id)
