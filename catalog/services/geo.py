"""Great-circle distance and metro-area clustering of cities.

Pure functions, no database access. ``aggregate_stats_by_cluster`` is what the
dashboard uses to fold suburbs (e.g. "Shoreditch", "Camden") into the city
with the most events.
"""

from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from math import asin, cos, radians, sin, sqrt

EARTH_RADIUS_KM = 6371.0
DEFAULT_CLUSTER_RADIUS_KM = 20.0

Coordinate = float | int | Decimal


def haversine_distance(lat1: Coordinate, lon1: Coordinate, lat2: Coordinate, lon2: Coordinate) -> float:
    """Distance in kilometres between two points on a spherical Earth."""
    lat1, lon1, lat2, lon2 = (float(v) for v in (lat1, lon1, lat2, lon2))
    dlat = radians(lat2 - lat1)
    dlon = radians(lon2 - lon1)
    a = sin(dlat / 2) ** 2 + cos(radians(lat1)) * cos(radians(lat2)) * sin(dlon / 2) ** 2
    # Rounding can push ``a`` a hair above 1 for antipodal points
    return 2 * EARTH_RADIUS_KM * asin(sqrt(min(1.0, a)))


@dataclass(frozen=True)
class CityPoint:
    """Minimal view of a city for clustering."""

    id: int
    country_id: int | None
    latitude: Coordinate | None = None
    longitude: Coordinate | None = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


def _as_point(city) -> CityPoint:
    if isinstance(city, CityPoint):
        return city
    if isinstance(city, dict):
        return CityPoint(
            id=city["id"],
            country_id=city.get("country_id"),
            latitude=city.get("latitude"),
            longitude=city.get("longitude"),
        )
    return CityPoint(
        id=city.id,
        country_id=city.country_id,
        latitude=city.latitude,
        longitude=city.longitude,
    )


def cluster_nearby_cities(cities: Iterable, threshold_km: float) -> list[list[int]]:
    """Group city ids into connected components of the "within threshold" graph.

    Two cities are linked when they share a country and lie at most
    ``threshold_km`` apart; clusters are the transitive closure of those links.
    Cities without coordinates or a country end up alone. Clusters and their
    members keep the order in which cities were given.

    Accepts City rows, ``CityPoint`` instances or dicts with ``id``,
    ``country_id``, ``latitude`` and ``longitude``.
    """
    points = [_as_point(c) for c in cities]
    n = len(points)
    parent = list(range(n))

    def find(x: int) -> int:
        while parent[x] != x:
            parent[x] = parent[parent[x]]
            x = parent[x]
        return x

    def union(a: int, b: int) -> None:
        ra, rb = find(a), find(b)
        if ra == rb:
            return
        # Lower index stays root so output order is stable
        if rb < ra:
            ra, rb = rb, ra
        parent[rb] = ra

    by_country: dict[int | None, list[int]] = defaultdict(list)
    for i, point in enumerate(points):
        if point.has_coordinates and point.country_id is not None:
            by_country[point.country_id].append(i)

    for indices in by_country.values():
        for pos, a in enumerate(indices):
            pa = points[a]
            for b in indices[pos + 1:]:
                pb = points[b]
                if haversine_distance(pa.latitude, pa.longitude, pb.latitude, pb.longitude) <= threshold_km:
                    union(a, b)

    components: dict[int, list[int]] = {}
    for i in range(n):
        components.setdefault(find(i), []).append(points[i].id)
    return list(components.values())


@dataclass
class SubCityStats:
    city_id: int
    city_name: str
    count: int


@dataclass
class ClusterStats:
    """Aggregated count for one metro area, keyed on its primary city."""

    city_id: int
    city_name: str
    count: int
    subcities: list[SubCityStats] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "city_id": self.city_id,
            "city_name": self.city_name,
            "count": self.count,
            "subcities": [
                {"city_id": s.city_id, "city_name": s.city_name, "count": s.count}
                for s in self.subcities
            ],
        }


def _primary_rank(stat: dict) -> tuple:
    # Highest count, then alphabetical (case-insensitive), then lowest id
    return (-stat["count"], stat["city_name"].casefold(), stat["city_id"])


def aggregate_stats_by_cluster(
    city_stats: Sequence[dict],
    threshold_km: float = DEFAULT_CLUSTER_RADIUS_KM,
    cities: Iterable | None = None,
) -> list[ClusterStats]:
    """Fold per-city counts into metro-area totals.

    ``city_stats`` entries carry ``city_id``, ``city_name`` and ``count``, and
    either their own ``country_id``/``latitude``/``longitude`` or a matching
    record in ``cities``. Stats for cities with no location data are kept as
    singleton clusters.

    Returns clusters sorted by total count, highest first.
    """
    if not city_stats:
        return []

    locations: dict[int, CityPoint] = {}
    for city in cities or ():
        point = _as_point(city)
        locations[point.id] = point

    points = []
    for stat in city_stats:
        point = locations.get(stat["city_id"])
        if point is None:
            point = CityPoint(
                id=stat["city_id"],
                country_id=stat.get("country_id"),
                latitude=stat.get("latitude"),
                longitude=stat.get("longitude"),
            )
        points.append(point)

    stats_by_id = {stat["city_id"]: stat for stat in city_stats}
    results = []
    for member_ids in cluster_nearby_cities(points, threshold_km):
        members = sorted((stats_by_id[i] for i in member_ids), key=_primary_rank)
        primary, rest = members[0], members[1:]
        results.append(
            ClusterStats(
                city_id=primary["city_id"],
                city_name=primary["city_name"],
                count=sum(m["count"] for m in members),
                subcities=[
                    SubCityStats(city_id=m["city_id"], city_name=m["city_name"], count=m["count"])
                    for m in rest
                ],
            )
        )

    results.sort(key=lambda c: (-c.count, c.city_name.casefold(), c.city_id))
    return results
