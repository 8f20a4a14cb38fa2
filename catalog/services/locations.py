"""Resolve scraped venue data onto Country, City and Venue rows.

Resolution order for a venue with a city:

1. country by name/alias (``CountryResolver``)
2. city name validation (second line of defence; City rows also validate
   themselves on flush)
3. existing city in that country by canonical name, then by alternate name,
   case-insensitively
4. otherwise a new city
5. venue by (name, city), filling in coordinates and address it lacks

Nothing is written when validation fails.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from loguru import logger
from sqlalchemy import String, cast, func, or_
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from catalog.errors import InvalidCityNameError, MissingRequiredFieldError
from catalog.models import City, Country, CountryRead, Venue, utc_now
from catalog.services.city_names import validate_city_name
from catalog.services.countries import CountryResolver, normalize_country
from catalog.services.persistence import find_or_create
from catalog.services.text import name_key, slugify
from catalog.telemetry import TelemetryEvent, emit

COORDINATE_PLACES = Decimal("0.00000001")


def _first(data: dict, *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None and value != "":
            return value
    return None


def _to_coordinate(value, limit: int) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        number = Decimal(str(value)).quantize(COORDINATE_PLACES)
    except (InvalidOperation, ValueError):
        logger.warning(f"Ignoring unparseable coordinate {value!r}")
        return None
    if not number.is_finite() or abs(number) > limit:
        logger.warning(f"Ignoring out-of-range coordinate {value!r}")
        return None
    return number


def _clean(value) -> str | None:
    if value is None:
        return None
    text = " ".join(str(value).split())
    return text or None


@dataclass
class VenueData:
    """Normalized ``venue_data`` mapping from a scraper."""

    name: str | None
    city_name: str | None = None
    country_name: str | None = None
    latitude: Decimal | None = None
    longitude: Decimal | None = None
    address: str | None = None

    @classmethod
    def from_mapping(cls, data: dict | None) -> "VenueData":
        data = data or {}
        city = data.get("city_name")
        if city is None:
            city = data.get("city")
        return cls(
            name=_clean(data.get("name")),
            # Keep non-strings as-is so the validator can report invalid_type
            city_name=city.strip() if isinstance(city, str) else city,
            country_name=_clean(_first(data, "country_name", "country")),
            latitude=_to_coordinate(_first(data, "latitude", "lat"), 90),
            longitude=_to_coordinate(_first(data, "longitude", "lon", "lng"), 180),
            address=_clean(data.get("address")),
        )

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


class LocationResolver:
    """Find or create the venue (and its city) described by ``venue_data``."""

    def __init__(self, countries: CountryResolver):
        self.countries = countries

    async def resolve(self, session: AsyncSession, venue_data: dict | VenueData, source: Any = None) -> Venue:
        data = venue_data if isinstance(venue_data, VenueData) else VenueData.from_mapping(venue_data)
        if not data.name:
            raise MissingRequiredFieldError("venue_data.name")

        if data.city_name is None:
            # Not every venue has a city (online, unknown locality)
            return await self.find_or_create_venue(session, data, city=None)

        country = await self.countries.resolve(session, data.country_name)
        city = await self.find_or_create_city(session, data, country, source=source)
        return await self.find_or_create_venue(session, data, city=city)

    async def canonical_city_name(self, session: AsyncSession, venue_data: dict | VenueData) -> str | None:
        """Stored name of the city ``venue_data`` points at, without writing anything.

        Falls back to the trimmed input when the country or city is not stored
        yet, and to None when there is no usable city name.
        """
        data = venue_data if isinstance(venue_data, VenueData) else VenueData.from_mapping(venue_data)
        code = normalize_country(data.country_name)
        result = validate_city_name(data.city_name, code)
        if not result.ok:
            return None

        country_id = None
        if code is not None:
            country_id = (await session.exec(select(Country.id).where(Country.code == code))).first()
        if country_id is None:
            return result.name
        city = await find_city(session, result.name, country_id)
        return city.name if city is not None else result.name

    async def find_or_create_city(
        self,
        session: AsyncSession,
        data: VenueData,
        country: CountryRead,
        source: Any = None,
    ) -> City:
        result = validate_city_name(data.city_name, country.code)
        if not result.ok:
            emit(
                TelemetryEvent.city_name_rejected,
                f"City name rejected: {data.city_name!r} ({country.code}): {result.reason.value}",
                source=source,
                city_name=data.city_name,
                country_code=country.code,
                reason=result.reason.value,
                venue_name=data.name,
            )
            raise InvalidCityNameError(
                name=data.city_name if isinstance(data.city_name, str) else repr(data.city_name),
                country_code=country.code,
                reason=result.reason,
                layer="resolver",
            )
        city_name = result.name

        async def find() -> City | None:
            return await find_city(session, city_name, country.id)

        async def create() -> City:
            city = City(
                name=city_name,
                slug=await unique_city_slug(session, city_name, country.code),
                country_id=country.id,
                latitude=data.latitude if data.has_coordinates else None,
                longitude=data.longitude if data.has_coordinates else None,
                alternate_names=[],
            )
            session.add(city)
            await session.flush()
            logger.info(f"Created city {city.name!r} ({country.code}) id={city.id}")
            return city

        city, created = await find_or_create(session, "city", find, create)
        if not created and data.has_coordinates and (city.latitude is None or city.longitude is None):
            city.latitude, city.longitude = data.latitude, data.longitude
            city.updated_at = utc_now()
            session.add(city)
        return city

    async def find_or_create_venue(self, session: AsyncSession, data: VenueData, city: City | None) -> Venue:
        key = name_key(data.name)
        city_id = city.id if city is not None else None

        async def find() -> Venue | None:
            query = select(Venue).where(Venue.name_key == key)
            if city_id is None:
                query = query.where(Venue.city_id.is_(None))
            else:
                query = query.where(Venue.city_id == city_id)
            result = await session.exec(query.order_by(Venue.id))
            return result.first()

        async def create() -> Venue:
            base = slugify(f"{data.name} {city.name}" if city is not None else data.name)
            venue = Venue(
                name=data.name,
                name_key=key,
                slug=await _unique_slug(session, Venue, base),
                address=data.address,
                city_id=city_id,
                latitude=data.latitude if data.has_coordinates else None,
                longitude=data.longitude if data.has_coordinates else None,
            )
            session.add(venue)
            await session.flush()
            return venue

        venue, created = await find_or_create(session, "venue", find, create)
        if not created:
            changed = False
            if data.has_coordinates and (venue.latitude is None or venue.longitude is None):
                venue.latitude, venue.longitude = data.latitude, data.longitude
                changed = True
            if data.address and not venue.address:
                venue.address = data.address
                changed = True
            if changed:
                venue.updated_at = utc_now()
                session.add(venue)
        return venue


async def find_city(session: AsyncSession, name: str, country_id: int) -> City | None:
    """City in ``country_id`` whose canonical or alternate name matches ``name``.

    Canonical matches win over alternate-name matches, which win over a match
    on the accent-free spelling ("Krakow" finds "Kraków"). The first two
    compare case-insensitively (``str.casefold``).
    """
    wanted = " ".join(name.split())
    base_slug = slugify(wanted)
    query = (
        select(City)
        .where(City.country_id == country_id)
        .where(
            or_(
                func.lower(City.name) == wanted.lower(),
                City.slug == base_slug,
                City.slug.like(f"{base_slug}-%"),
                cast(City.alternate_names, String) != "[]",
            )
        )
        .order_by(City.id)
    )
    candidates = (await session.exec(query)).all()

    folded = wanted.casefold()
    for city in candidates:
        if city.name.casefold() == folded:
            return city
    for city in candidates:
        if city.matches(wanted):
            return city
    for city in candidates:
        if slugify(city.name) == base_slug:
            return city
    return None


async def unique_city_slug(session: AsyncSession, name: str, country_code: str) -> str:
    """``london``, then ``london-ca`` when taken by another country, then a counter."""
    base = slugify(name)
    if not await _slug_taken(session, City, base):
        return base
    return await _unique_slug(session, City, f"{base}-{country_code.lower()}")


async def _slug_taken(session: AsyncSession, model, slug: str) -> bool:
    result = await session.exec(select(model.id).where(model.slug == slug))
    return result.first() is not None


async def _unique_slug(session: AsyncSession, model, base: str) -> str:
    slug, counter = base, 2
    while await _slug_taken(session, model, slug):
        slug = f"{base}-{counter}"
        counter += 1
    return slug
