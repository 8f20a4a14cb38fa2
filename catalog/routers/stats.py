"""Dashboard statistics: event counts per metro area."""

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlmodel.ext.asyncio.session import AsyncSession

from catalog.config import get_settings
from catalog.database import get_session
from catalog.models import City
from catalog.services.stats import CityStatsService, get_cluster_city_ids

router = APIRouter(prefix="/stats", tags=["stats"])


def get_stats_service(request: Request) -> CityStatsService:
    """The app-wide stats service, created in create_app."""
    return request.app.state.city_stats


@router.get("/cities")
async def get_city_stats(
    radius_km: float | None = Query(None, gt=0, le=500),
    session: AsyncSession = Depends(get_session),
    stats: CityStatsService = Depends(get_stats_service),
):
    """Event counts per city, with nearby cities folded into the busiest one."""
    radius = radius_km or get_settings().cluster_radius_km
    clusters = await stats.get_city_statistics(session, radius)
    return {
        "radius_km": radius,
        "total": sum(c.count for c in clusters),
        "clusters": [c.as_dict() for c in clusters],
    }


@router.get("/cities/{city_id}/cluster")
async def get_city_cluster(
    city_id: int,
    radius_km: float | None = Query(None, gt=0, le=500),
    session: AsyncSession = Depends(get_session),
):
    """Ids of the cities sharing a metro cluster with ``city_id``."""
    city = await session.get(City, city_id)
    if city is None:
        raise HTTPException(status_code=404, detail="City not found")

    radius = radius_km or get_settings().cluster_radius_km
    return {
        "city_id": city_id,
        "radius_km": radius,
        "city_ids": await get_cluster_city_ids(session, city_id, radius),
    }
