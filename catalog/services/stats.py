"""Per-city event statistics, folded into metro areas for the dashboard."""

from sqlalchemy import func
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from catalog.cache import TTLCache
from catalog.models import City, Event, Venue
from catalog.services.geo import ClusterStats, aggregate_stats_by_cluster, cluster_nearby_cities


async def city_event_counts(session: AsyncSession) -> list[dict]:
    """Canonical events per city, with the location data clustering needs."""
    query = (
        select(
            City.id,
            City.name,
            City.country_id,
            City.latitude,
            City.longitude,
            func.count(Event.id).label("count"),
        )
        .join(Venue, Venue.city_id == City.id)
        .join(Event, Event.venue_id == Venue.id)
        .group_by(City.id, City.name, City.country_id, City.latitude, City.longitude)
        .order_by(City.id)
    )
    rows = (await session.exec(query)).all()
    return [
        {
            "city_id": row[0],
            "city_name": row[1],
            "country_id": row[2],
            "latitude": row[3],
            "longitude": row[4],
            "count": row[5],
        }
        for row in rows
    ]


class CityStatsService:
    """Clustered city statistics with a TTL cache keyed by radius."""

    def __init__(self, cache: TTLCache, default_radius_km: float = 20.0):
        self.cache = cache
        self.default_radius_km = default_radius_km

    async def get_city_statistics(self, session: AsyncSession, radius_km: float | None = None) -> list[ClusterStats]:
        radius = self.default_radius_km if radius_km is None else radius_km

        async def compute() -> list[ClusterStats]:
            return aggregate_stats_by_cluster(await city_event_counts(session), radius)

        return await self.cache.get_or_set(("city_stats", radius), compute)

    def invalidate(self) -> None:
        self.cache.invalidate()


async def get_cluster_city_ids(session: AsyncSession, city_id: int, radius_km: float) -> list[int]:
    """Ids of all cities in the same metro cluster as ``city_id`` (itself included)."""
    city = await session.get(City, city_id)
    if city is None:
        return []
    if city.latitude is None or city.longitude is None:
        return [city_id]

    cities = (
        await session.exec(
            select(City).where(
                City.country_id == city.country_id,
                City.latitude.is_not(None),
                City.longitude.is_not(None),
            )
        )
    ).all()
    for cluster in cluster_nearby_cities(cities, radius_km):
        if city_id in cluster:
            return cluster
    return [city_id]
