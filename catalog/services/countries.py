"""Country lookup for incoming venue data.

Scrapers name countries in every way imaginable ("UK", "England", "United
Kingdom", "GB", "Polska"). ``normalize_country`` folds those onto an ISO
alpha-2 code through an explicit alias table; ``CountryResolver`` turns the
code into a ``Country`` row, creating it the first time it is seen.
"""

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from catalog.cache import TTLCache
from catalog.errors import MissingRequiredFieldError
from catalog.models import Country, CountryRead
from catalog.services.persistence import find_or_create
from catalog.services.text import normalize_name, slugify

# ISO code -> canonical display name
COUNTRY_NAMES: dict[str, str] = {
    "AR": "Argentina",
    "AT": "Austria",
    "AU": "Australia",
    "BE": "Belgium",
    "BR": "Brazil",
    "CA": "Canada",
    "CH": "Switzerland",
    "CZ": "Czech Republic",
    "DE": "Germany",
    "DK": "Denmark",
    "ES": "Spain",
    "FI": "Finland",
    "FR": "France",
    "GB": "United Kingdom",
    "GR": "Greece",
    "HU": "Hungary",
    "IE": "Ireland",
    "IT": "Italy",
    "JP": "Japan",
    "LT": "Lithuania",
    "MX": "Mexico",
    "NL": "Netherlands",
    "NO": "Norway",
    "NZ": "New Zealand",
    "PL": "Poland",
    "PT": "Portugal",
    "RO": "Romania",
    "SE": "Sweden",
    "SK": "Slovakia",
    "UA": "Ukraine",
    "US": "United States",
    "ZA": "South Africa",
}

# Normalized alias -> ISO code (canonical names and codes are added below)
COUNTRY_ALIASES: dict[str, str] = {
    "uk": "GB",
    "great britain": "GB",
    "britain": "GB",
    "england": "GB",
    "scotland": "GB",
    "wales": "GB",
    "northern ireland": "GB",
    "usa": "US",
    "u.s.a.": "US",
    "u.s.": "US",
    "united states of america": "US",
    "america": "US",
    "polska": "PL",
    "deutschland": "DE",
    "osterreich": "AT",
    "espana": "ES",
    "italia": "IT",
    "nederland": "NL",
    "the netherlands": "NL",
    "holland": "NL",
    "eire": "IE",
    "republic of ireland": "IE",
    "czechia": "CZ",
    "cesko": "CZ",
    "schweiz": "CH",
    "suisse": "CH",
    "brasil": "BR",
    "mexico": "MX",
    "sverige": "SE",
    "norge": "NO",
    "danmark": "DK",
    "suomi": "FI",
    "magyarorszag": "HU",
}

for _code, _name in COUNTRY_NAMES.items():
    COUNTRY_ALIASES.setdefault(normalize_name(_name), _code)
    COUNTRY_ALIASES.setdefault(_code.lower(), _code)


def normalize_country(value: str | None) -> str | None:
    """ISO code for a country name, alias or code; None when unknown."""
    key = normalize_name(value)
    if not key:
        return None
    return COUNTRY_ALIASES.get(key)


class CountryResolver:
    """Resolve country names to ``Country`` rows.

    Returns detached ``CountryRead`` snapshots, cached by ISO code in the
    injected ``TTLCache``. Only rows read back from the database are cached:
    a row created in the current transaction could still be rolled back.
    """

    def __init__(self, cache: TTLCache):
        self.cache = cache

    async def resolve(self, session: AsyncSession, value: str | None) -> CountryRead:
        if not value or not str(value).strip():
            raise MissingRequiredFieldError("country")
        code = normalize_country(value)
        if code is None:
            raise MissingRequiredFieldError("country", value=value, detail="unknown country")

        cached = self.cache.get(code)
        if cached is not None:
            return cached

        async def find() -> Country | None:
            result = await session.exec(select(Country).where(Country.code == code))
            return result.first()

        async def create() -> Country:
            name = COUNTRY_NAMES.get(code, value.strip())
            country = Country(name=name, code=code, slug=slugify(name))
            session.add(country)
            await session.flush()
            return country

        country, created = await find_or_create(session, "country", find, create)
        snapshot = CountryRead.model_validate(country)
        if not created:
            self.cache.set(code, snapshot)
        return snapshot
