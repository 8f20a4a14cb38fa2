"""Heuristic validation of city names coming from scrapers.

Scrapers regularly hand us street addresses ("425 Burwood Hwy"), postcodes
("SW18 2SS") or venue names in the city field. Nothing here looks names up in
a gazetteer; it only recognises the shapes that are clearly *not* a city.

Rules live in ``COUNTRY_RULES`` (country code -> compiled patterns) plus the
``GENERIC_RULES`` that apply everywhere. Supporting a new country means adding
an entry to the table.
"""

import re
from dataclasses import dataclass, field
from enum import Enum

from catalog.errors import InvalidCityNameError

MIN_CITY_NAME_LENGTH = 2


class CityNameRejection(str, Enum):
    """Why a string was refused as a city name."""

    empty_name = "empty_name"
    too_short = "too_short"
    invalid_type = "invalid_type"
    numeric = "numeric"
    postcode = "postcode"
    embedded_postcode = "embedded_postcode"
    street_address = "street_address"
    venue_name = "venue_name"


@dataclass(frozen=True)
class CityNameResult:
    """Outcome of ``validate_city_name``. ``name`` is the trimmed input."""

    name: str | None
    reason: CityNameRejection | None = None

    @property
    def ok(self) -> bool:
        return self.reason is None

    def __bool__(self) -> bool:
        return self.ok


@dataclass(frozen=True)
class Rule:
    pattern: re.Pattern
    reason: CityNameRejection


@dataclass(frozen=True)
class CountryRules:
    """Per-country patterns.

    ``locality_suffix`` strips a trailing "STATE POSTCODE" tail from an address
    part, leaving the locality (used when extracting cities from addresses).
    """

    rules: tuple[Rule, ...] = ()
    locality_suffix: re.Pattern | None = None
    states: frozenset[str] = field(default_factory=frozenset)


def _rule(pattern: str, reason: CityNameRejection, flags: int = re.IGNORECASE) -> Rule:
    return Rule(re.compile(pattern, flags), reason)


_STREET_WORDS = (
    r"st|street|rd|road|ave|avenue|blvd|boulevard|dr|drive|ln|lane|ct|court|hwy|highway|"
    r"pkwy|parkway|pl|place|ter|terrace|cres|crescent|sq|square|way|close|row|gate|"
    r"ul|ulica|strasse|straße|str|rue|calle|via|straat"
)
_VENUE_WORDS = (
    r"pub|bar|inn|tavern|hotel|club|stadium|arena|theatre|theater|cinema|"
    r"brewery|restaurant|cafe|café|hall|lounge"
)

GENERIC_RULES: tuple[Rule, ...] = (
    _rule(r"^\d+$", CityNameRejection.numeric),
    # "425 Burwood Hwy", "10-16 Botchergate", "12a High Street"
    _rule(r"^\d+[a-z]?(\s*[-–/]\s*\d+[a-z]?)?\s+\S", CityNameRejection.street_address),
    # "Unit 5, 12 High St", "Burwood Hwy 425"
    _rule(rf"\b({_STREET_WORDS})\.?\s*\d+", CityNameRejection.street_address),
    _rule(r",.*\d|\d.*,", CityNameRejection.street_address),
    # "E5", "W1F 8PU", "B12": short letter/digit codes
    _rule(r"^(?=[a-z0-9 ]*\d)(?=[a-z0-9 ]*[a-z])[a-z0-9]{2,4}(\s?[a-z0-9]{3})?$", CityNameRejection.postcode),
    # Three or more words ending in a venue word: "The Rose and Crown Pub"
    _rule(rf"^\S+(\s+\S+){{1,}}\s+({_VENUE_WORDS})$", CityNameRejection.venue_name),
    _rule(rf"^(\S+\s+)+({_VENUE_WORDS})\s+(at|@)\s+\S+", CityNameRejection.venue_name),
)

_AU_STATES = frozenset({"NSW", "VIC", "QLD", "WA", "SA", "TAS", "NT", "ACT"})
_US_STATE_ZIP = r"\b[A-Z]{2}\s+\d{5}(-\d{4})?$"
_GB_POSTCODE = r"[A-Z]{1,2}\d[A-Z\d]?\s*\d[A-Z]{2}"
_CA_POSTCODE = r"[A-Z]\d[A-Z]\s*\d[A-Z]\d"

COUNTRY_RULES: dict[str, CountryRules] = {
    "GB": CountryRules(
        rules=(
            _rule(rf"^{_GB_POSTCODE}$", CityNameRejection.postcode),
            _rule(r"^[A-Z]{1,2}\d[A-Z\d]?$", CityNameRejection.postcode),
            _rule(rf"\s{_GB_POSTCODE}$", CityNameRejection.embedded_postcode),
        ),
        locality_suffix=re.compile(rf"\s*\b{_GB_POSTCODE}$", re.IGNORECASE),
    ),
    "US": CountryRules(
        rules=(
            _rule(r"^\d{5}(-\d{4})?$", CityNameRejection.postcode),
            _rule(_US_STATE_ZIP, CityNameRejection.embedded_postcode, flags=0),
            _rule(r"\s\d{5}(-\d{4})?$", CityNameRejection.embedded_postcode),
        ),
        locality_suffix=re.compile(rf"\s*{_US_STATE_ZIP}"),
    ),
    "AU": CountryRules(
        rules=(
            _rule(r"^\d{4}$", CityNameRejection.postcode),
            _rule(rf"\b({'|'.join(sorted(_AU_STATES))})\s+\d{{4}}$", CityNameRejection.embedded_postcode),
            _rule(r"\s\d{4}$", CityNameRejection.embedded_postcode),
        ),
        locality_suffix=re.compile(rf"\s+\b({'|'.join(sorted(_AU_STATES))})\s+\d{{4}}$"),
        states=_AU_STATES,
    ),
    "CA": CountryRules(
        rules=(
            _rule(rf"^{_CA_POSTCODE}$", CityNameRejection.postcode),
            _rule(rf"\s{_CA_POSTCODE}$", CityNameRejection.embedded_postcode),
        ),
        locality_suffix=re.compile(rf"\s*\b([A-Z]{{2}}\s+)?{_CA_POSTCODE}$", re.IGNORECASE),
    ),
    "PL": CountryRules(
        rules=(
            _rule(r"^\d{2}-\d{3}$", CityNameRejection.postcode),
            _rule(r"\b\d{2}-\d{3}\b", CityNameRejection.embedded_postcode),
        ),
        locality_suffix=re.compile(r"^\d{2}-\d{3}\s+"),
    ),
    "NL": CountryRules(
        rules=(
            _rule(r"^\d{4}\s?[A-Z]{2}$", CityNameRejection.postcode),
            _rule(r"\b\d{4}\s?[A-Z]{2}\b", CityNameRejection.embedded_postcode),
        ),
        locality_suffix=re.compile(r"^\d{4}\s?[A-Z]{2}\s+", re.IGNORECASE),
    ),
    "IE": CountryRules(
        rules=(
            _rule(r"^[A-Z]\d{2}\s?[A-Z\d]{4}$", CityNameRejection.postcode),
            _rule(r"\s[A-Z]\d{2}\s?[A-Z\d]{4}$", CityNameRejection.embedded_postcode),
        ),
    ),
}

# Five-digit postcode countries share one shape: "75001 Paris", "Berlin 10115"
for _code in ("DE", "FR", "ES", "IT"):
    COUNTRY_RULES[_code] = CountryRules(
        rules=(
            _rule(r"^\d{5}$", CityNameRejection.postcode),
            _rule(r"\b\d{5}\b", CityNameRejection.embedded_postcode),
        ),
        locality_suffix=re.compile(r"^\d{5}\s+"),
    )


def rules_for(country_code: str | None) -> CountryRules:
    return COUNTRY_RULES.get((country_code or "").upper(), CountryRules())


def validate_city_name(name, country_code: str | None = None) -> CityNameResult:
    """Check whether ``name`` could plausibly be a city in ``country_code``.

    Country rules run before the generic ones, so a string that is a
    postcode in the given country is reported as such even when a generic
    rule would also catch it. Unknown or missing countries get only the
    generic rules.

    >>> validate_city_name("SW18 2SS", "GB").reason
    <CityNameRejection.postcode: 'postcode'>
    >>> validate_city_name("  London ", "GB").name
    'London'
    """
    if name is None:
        return CityNameResult(None, CityNameRejection.empty_name)
    if not isinstance(name, str):
        return CityNameResult(None, CityNameRejection.invalid_type)

    trimmed = " ".join(name.split())
    if not trimmed:
        return CityNameResult(trimmed, CityNameRejection.empty_name)
    if len(trimmed) < MIN_CITY_NAME_LENGTH:
        return CityNameResult(trimmed, CityNameRejection.too_short)

    for rule in rules_for(country_code).rules + GENERIC_RULES:
        if rule.pattern.search(trimmed):
            return CityNameResult(trimmed, rule.reason)
    return CityNameResult(trimmed)


def ensure_valid_city_name(name, country_code: str | None, layer: str = "resolver") -> str:
    """Return the trimmed name or raise ``InvalidCityNameError``."""
    result = validate_city_name(name, country_code)
    if not result.ok:
        raise InvalidCityNameError(
            name=name if isinstance(name, str) else repr(name),
            country_code=country_code,
            reason=result.reason,
            layer=layer,
        )
    return result.name


def extract_city_from_address(address: str | None, country_code: str | None) -> str | None:
    """Pull the locality out of a comma-separated street address.

    Handles "Street, City, Postcode" (GB), "Street, City STATE 1234" (AU) and
    "Street, City, ST 12345" (US) shapes. The first part is always treated as
    the street or venue. Returns None when no part looks like a city.
    """
    if not address:
        return None
    parts = [p.strip() for p in address.split(",") if p.strip()]
    if len(parts) < 2:
        return None

    suffix = rules_for(country_code).locality_suffix
    for part in reversed(parts[1:]):
        candidate = suffix.sub("", part).strip() if suffix else part
        if len(candidate) < 3:
            continue
        if validate_city_name(candidate, country_code).ok:
            return candidate
    return None


def detect_data_quality_issues(name: str | None) -> list[str]:
    """Flag suspicious traits of an already stored city name."""
    if not isinstance(name, str):
        return []
    issues = []
    if re.search(r"\d{4,}", name):
        issues.append("postcode_in_name")
    if re.match(r"^[A-Z]{2,3}\s", name):
        issues.append("state_abbreviation")
    if len(name) <= 5 and re.search(r"\d", name):
        issues.append("short_with_numbers")
    return issues
