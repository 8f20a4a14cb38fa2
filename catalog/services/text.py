"""String normalisation shared by fingerprinting, slugs and name matching."""

import re
from datetime import date, datetime, timezone

from unidecode import unidecode

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_PUNCTUATION = re.compile(r"[^\w\s]", re.UNICODE)


def normalize_name(name: str | None) -> str:
    """Normalize name for matching: remove accents, lowercase, strip."""
    if not name:
        return ""
    # Remove accents, lowercase, normalize whitespace
    normalized = unidecode(name.lower().strip())
    # Collapse multiple spaces
    normalized = " ".join(normalized.split())
    return normalized


def normalize_title(title: str | None) -> str:
    """Like ``normalize_name`` but also drops punctuation ("Quiz Night!" == "quiz night")."""
    normalized = _PUNCTUATION.sub(" ", normalize_name(title))
    return " ".join(normalized.split())


def name_key(name: str) -> str:
    """Case-insensitive comparison key that keeps accents ("Zürich" != "Zurich")."""
    return " ".join(name.split()).casefold()


def slugify(value: str) -> str:
    slug = _NON_ALNUM.sub("-", unidecode(value).lower()).strip("-")
    return slug or "n-a"


def parse_datetime(value) -> tuple[datetime | None, bool]:
    """Parse a scraped start/end value.

    Returns ``(naive UTC datetime, timed)``. ``timed`` is False for plain dates
    and date-only strings, which are stored at midnight.
    """
    if value is None or value == "":
        return None, False
    if isinstance(value, datetime):
        return _to_naive_utc(value), True
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day), False
    if isinstance(value, str):
        text = value.strip()
        try:
            return datetime.strptime(text, "%Y-%m-%d"), False
        except ValueError:
            pass
        # Try common formats
        for fmt in ["%Y-%m-%d %H:%M:%S.%f", "%Y-%m-%d %H:%M:%S", "%Y-%m-%d %H:%M"]:
            try:
                return datetime.strptime(text, fmt), True
            except ValueError:
                continue
        # Try ISO format
        try:
            return _to_naive_utc(datetime.fromisoformat(text.replace("Z", "+00:00"))), True
        except ValueError:
            pass
    raise ValueError(f"Unparseable datetime: {value!r}")


def _to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value
