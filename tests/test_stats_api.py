"""Tests for the stats endpoints."""

from decimal import Decimal

import pytest

from catalog.models import City, Country, Event, Venue


@pytest.fixture
async def metro(async_session):
    """London and Shoreditch (about 4km apart) plus Manchester, with events."""
    gb = Country(name="United Kingdom", code="GB", slug="united-kingdom")
    async_session.add(gb)
    await async_session.commit()

    cities = {}
    for name, lat, lon, events in [
        ("London", "51.50740000", "-0.12780000", 3),
        ("Shoreditch", "51.52460000", "-0.07860000", 1),
        ("Manchester", "53.48080000", "-2.24260000", 2),
    ]:
        city = City(
            name=name,
            slug=name.lower(),
            country_id=gb.id,
            latitude=Decimal(lat),
            longitude=Decimal(lon),
            alternate_names=[],
        )
        async_session.add(city)
        await async_session.commit()
        venue = Venue(name=f"{name} Hall", name_key=f"{name.lower()} hall", slug=f"{name.lower()}-hall", city_id=city.id)
        async_session.add(venue)
        await async_session.commit()
        for i in range(events):
            async_session.add(Event(title=f"{name} gig {i}", venue_id=venue.id, fingerprint=f"{name}-{i}"))
        await async_session.commit()
        cities[name] = city
    return cities


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


async def test_city_stats_folds_nearby_cities(client, metro):
    response = await client.get("/api/stats/cities")
    assert response.status_code == 200

    data = response.json()
    assert data["radius_km"] == 20.0
    assert data["total"] == 6
    assert data["clusters"] == [
        {
            "city_id": metro["London"].id,
            "city_name": "London",
            "count": 4,
            "subcities": [{"city_id": metro["Shoreditch"].id, "city_name": "Shoreditch", "count": 1}],
        },
        {"city_id": metro["Manchester"].id, "city_name": "Manchester", "count": 2, "subcities": []},
    ]


async def test_city_stats_small_radius(client, metro):
    response = await client.get("/api/stats/cities", params={"radius_km": 1})
    assert response.status_code == 200
    assert [(c["city_name"], c["count"]) for c in response.json()["clusters"]] == [
        ("London", 3),
        ("Manchester", 2),
        ("Shoreditch", 1),
    ]


@pytest.mark.parametrize("radius", [0, -5, 501])
async def test_city_stats_rejects_bad_radius(client, radius):
    response = await client.get("/api/stats/cities", params={"radius_km": radius})
    assert response.status_code == 422


async def test_city_stats_empty(client):
    response = await client.get("/api/stats/cities")
    assert response.json() == {"radius_km": 20.0, "total": 0, "clusters": []}


async def test_city_stats_are_cached_until_invalidated(app, client, async_session, metro):
    first = (await client.get("/api/stats/cities")).json()

    venue = Venue(name="Albert Hall", name_key="albert hall", slug="albert-hall", city_id=metro["Manchester"].id)
    async_session.add(venue)
    await async_session.commit()
    for i in range(3):
        async_session.add(Event(title=f"Late show {i}", venue_id=venue.id, fingerprint=f"late-{i}"))
    await async_session.commit()

    assert (await client.get("/api/stats/cities")).json() == first

    app.state.city_stats.invalidate()
    refreshed = (await client.get("/api/stats/cities")).json()
    assert refreshed["total"] == 9
    assert refreshed["clusters"][0]["city_name"] == "Manchester"


async def test_city_cluster(client, metro):
    response = await client.get(f"/api/stats/cities/{metro['Shoreditch'].id}/cluster")
    assert response.status_code == 200
    data = response.json()
    assert data["city_id"] == metro["Shoreditch"].id
    assert sorted(data["city_ids"]) == sorted([metro["London"].id, metro["Shoreditch"].id])


async def test_city_cluster_without_coordinates(client, async_session, metro):
    city = City(name="Bath", slug="bath", country_id=metro["London"].country_id, alternate_names=[])
    async_session.add(city)
    await async_session.commit()

    response = await client.get(f"/api/stats/cities/{city.id}/cluster")
    assert response.json()["city_ids"] == [city.id]


async def test_city_cluster_not_found(client):
    response = await client.get("/api/stats/cities/999/cluster")
    assert response.status_code == 404
    assert response.json()["detail"] == "City not found"
