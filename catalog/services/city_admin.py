"""Operator actions on cities: alternate names, slugs, cleanup and merges.

Every function commits its own transaction.
"""

import re
from collections import Counter

from loguru import logger
from sqlalchemy import func, update
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from catalog.models import City, Country, Event, Venue, utc_now
from catalog.services.city_names import extract_city_from_address, validate_city_name
from catalog.services.locations import find_city, unique_city_slug

SLUG_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")


class CityAdminError(ValueError):
    """Rejected admin action. ``code`` is a stable machine-readable reason."""

    def __init__(self, code: str, message: str | None = None):
        super().__init__(message or code)
        self.code = code


async def get_city(session: AsyncSession, city_id: int) -> City:
    city = await session.get(City, city_id)
    if city is None:
        raise CityAdminError("not_found", f"City {city_id} not found")
    return city


async def add_alternate_name(session: AsyncSession, city: City, alternate_name: str) -> City:
    name = " ".join((alternate_name or "").split())
    if not name:
        raise CityAdminError("empty_name", "Alternate name cannot be empty")
    if city.matches(name):
        raise CityAdminError("already_exists", f"{name!r} already names city {city.id}")
    # A name identifies at most one city per country
    other = await find_city(session, name, city.country_id)
    if other is not None and other.id != city.id and other.matches(name):
        raise CityAdminError("used_by_other_city", f"{name!r} already names city {other.id}")

    # Reassign rather than append: JSON columns do not track in-place mutation
    city.alternate_names = [*(city.alternate_names or []), name]
    city.updated_at = utc_now()
    session.add(city)
    await session.commit()
    await session.refresh(city)
    logger.info(f"Added alternate name {name!r} to city {city.name!r} ({city.id})")
    return city


async def remove_alternate_name(session: AsyncSession, city: City, alternate_name: str) -> City:
    wanted = " ".join((alternate_name or "").split()).casefold()
    remaining = [n for n in city.alternate_names or [] if n.casefold() != wanted]
    if len(remaining) == len(city.alternate_names or []):
        raise CityAdminError("not_found", f"{alternate_name!r} is not an alternate name of city {city.id}")

    city.alternate_names = remaining
    city.updated_at = utc_now()
    session.add(city)
    await session.commit()
    await session.refresh(city)
    logger.info(f"Removed alternate name {alternate_name!r} from city {city.name!r} ({city.id})")
    return city


async def slug_available(session: AsyncSession, slug: str, exclude_city_id: int | None = None) -> bool:
    query = select(City.id).where(City.slug == slug)
    if exclude_city_id is not None:
        query = query.where(City.id != exclude_city_id)
    return (await session.exec(query)).first() is None


async def update_city_slug(session: AsyncSession, city: City, slug: str) -> City:
    slug = (slug or "").strip().lower()
    if not SLUG_PATTERN.match(slug):
        raise CityAdminError("invalid_slug", f"Invalid slug {slug!r}")
    if not await slug_available(session, slug, exclude_city_id=city.id):
        raise CityAdminError("slug_taken", f"Slug {slug!r} is already in use")

    city.slug = slug
    city.updated_at = utc_now()
    session.add(city)
    await session.commit()
    await session.refresh(city)
    return city


async def delete_city(session: AsyncSession, city_id: int) -> City:
    """Delete a city that has no venues."""
    city = await get_city(session, city_id)
    venue_count = await session.scalar(select(func.count(Venue.id)).where(Venue.city_id == city_id))
    if venue_count:
        raise CityAdminError("has_venues", f"City {city_id} still has {venue_count} venue(s)")
    await session.delete(city)
    await session.commit()
    return city


async def find_invalid_cities(session: AsyncSession) -> list[tuple[City, str]]:
    """Stored cities whose names fail validation, with the rejection reason.

    Rows written before validation existed, or through raw SQL, can hold
    street addresses or postcodes.
    """
    rows = (
        await session.exec(
            select(City, Country.code).join(Country, Country.id == City.country_id).order_by(City.id)
        )
    ).all()
    invalid = []
    for city, code in rows:
        result = validate_city_name(city.name, code)
        if not result.ok:
            invalid.append((city, result.reason.value))
    return invalid


async def suggest_replacement_city(session: AsyncSession, city: City) -> City:
    """Find or create the city that ``city``'s venue addresses point to.

    Uses the most common locality extracted from the addresses of the venues
    attached to ``city``, within the same country.
    """
    country = await session.get(Country, city.country_id)
    addresses = (
        await session.exec(select(Venue.address).where(Venue.city_id == city.id, Venue.address.is_not(None)))
    ).all()
    if not addresses:
        raise CityAdminError("no_replacement_found", f"City {city.id} has no venue addresses")

    candidates = Counter(
        name for name in (extract_city_from_address(a, country.code) for a in addresses) if name
    )
    if not candidates:
        raise CityAdminError("no_replacement_found", f"No city found in venue addresses of city {city.id}")
    name = candidates.most_common(1)[0][0]

    existing = await find_city(session, name, country.id)
    if existing is not None:
        return existing

    replacement = City(
        name=name,
        slug=await unique_city_slug(session, name, country.code),
        country_id=country.id,
        alternate_names=[],
    )
    session.add(replacement)
    await session.commit()
    await session.refresh(replacement)
    logger.info(f"Created replacement city {name!r} ({country.code}) for {city.name!r}")
    return replacement


async def merge_cities(
    session: AsyncSession,
    target_id: int,
    source_ids: list[int],
    add_as_alternates: bool = True,
) -> dict:
    """Fold ``source_ids`` into ``target_id``: move venues, then delete the sources.

    Cities must share a country. When the target already has a venue with the
    same name, events move to that venue and the duplicate venue is removed.
    """
    source_ids = [i for i in dict.fromkeys(source_ids) if i != target_id]
    if not source_ids:
        raise CityAdminError("no_sources", "No source cities to merge")

    target = await get_city(session, target_id)
    sources = (await session.exec(select(City).where(City.id.in_(source_ids)))).all()
    if len(sources) != len(source_ids):
        raise CityAdminError("source_city_not_found", "One or more source cities do not exist")
    if any(c.country_id != target.country_id for c in sources):
        raise CityAdminError("cities_must_be_in_same_country", "Cities must be in the same country")

    target_venues = {
        v.name_key: v for v in (await session.exec(select(Venue).where(Venue.city_id == target_id))).all()
    }
    venues_moved = venues_merged = 0
    for venue in (await session.exec(select(Venue).where(Venue.city_id.in_(source_ids)))).all():
        keep = target_venues.get(venue.name_key)
        if keep is None:
            venue.city_id = target_id
            venue.updated_at = utc_now()
            session.add(venue)
            target_venues[venue.name_key] = venue
            venues_moved += 1
        else:
            await session.execute(update(Event).where(Event.venue_id == venue.id).values(venue_id=keep.id))
            await session.delete(venue)
            venues_merged += 1
    await session.flush()

    if add_as_alternates:
        country = await session.get(Country, target.country_id)
        names = list(target.alternate_names or [])
        for city in sources:
            for name in [city.name, *(city.alternate_names or [])]:
                if not validate_city_name(name, country.code).ok or target.matches(name):
                    continue
                if name.casefold() not in {n.casefold() for n in names}:
                    names.append(name)
        target.alternate_names = names
        target.updated_at = utc_now()
        session.add(target)

    for city in sources:
        await session.delete(city)
    await session.commit()
    await session.refresh(target)

    logger.info(
        f"Merged cities {source_ids} into {target.name!r} ({target_id}): "
        f"{venues_moved} venue(s) moved, {venues_merged} merged"
    )
    return {
        "target_id": target_id,
        "merged_city_ids": source_ids,
        "venues_moved": venues_moved,
        "venues_merged": venues_merged,
        "alternate_names": list(target.alternate_names or []),
    }

