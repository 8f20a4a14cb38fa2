"""Tests for location resolution (country, city, venue)."""

from decimal import Decimal

import pytest
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from catalog.errors import ErrorKind, InvalidCityNameError, MissingRequiredFieldError
from catalog.models import City, Country, Venue
from catalog.services.countries import normalize_country
from catalog.services.locations import VenueData


async def count(session, model) -> int:
    return await session.scalar(select(func.count()).select_from(model))


class TestNormalizeCountry:
    """Tests for normalize_country."""

    @pytest.mark.parametrize(
        "value,code",
        [
            ("United Kingdom", "GB"),
            ("UK", "GB"),
            ("england", "GB"),
            ("GB", "GB"),
            ("Polska", "PL"),
            ("Deutschland", "DE"),
            ("USA", "US"),
            ("  United   States ", "US"),
            ("Österreich", "AT"),
        ],
    )
    def test_known(self, value, code):
        assert normalize_country(value) == code

    def test_unknown(self):
        assert normalize_country("Atlantis") is None
        assert normalize_country("") is None
        assert normalize_country(None) is None


class TestVenueData:
    """Tests for VenueData.from_mapping."""

    def test_aliases_and_coordinates(self):
        data = VenueData.from_mapping(
            {"name": " The  Blind Tiger ", "city": "Brighton", "country": "UK", "lat": "50.8225", "lng": -0.1372}
        )
        assert data.name == "The Blind Tiger"
        assert data.city_name == "Brighton"
        assert data.country_name == "UK"
        assert data.latitude == Decimal("50.82250000")
        assert data.longitude == Decimal("-0.13720000")
        assert data.has_coordinates

    def test_out_of_range_coordinates_dropped(self):
        data = VenueData.from_mapping({"name": "Pier", "latitude": 123, "longitude": "east"})
        assert data.latitude is None
        assert data.longitude is None
        assert not data.has_coordinates


async def test_alternate_names_resolve_to_canonical_city(async_session, locations, warsaw):
    """Every spelling of Warsaw resolves to the same city, case-insensitively."""
    venues = []
    for index, spelling in enumerate(["Warsaw", "Warszawa", "warschau", "WARSZAWA"]):
        venue = await locations.resolve(
            async_session, {"name": f"Klub {index}", "city_name": spelling, "country_name": "Poland"}
        )
        venues.append(venue)
    await async_session.commit()

    assert {v.city_id for v in venues} == {warsaw.id}
    assert await count(async_session, City) == 1


async def test_alternate_names_never_cross_countries(async_session, locations, warsaw):
    venue = await locations.resolve(
        async_session, {"name": "Polnischer Klub", "city_name": "Warszawa", "country_name": "Germany"}
    )
    await async_session.commit()

    city = await async_session.get(City, venue.city_id)
    germany = (await async_session.exec(select(Country).where(Country.code == "DE"))).one()
    assert city.id != warsaw.id
    assert city.name == "Warszawa"
    assert city.country_id == germany.id
    assert city.alternate_names == []
    assert await count(async_session, City) == 2


async def test_same_city_name_in_two_countries_gets_distinct_slugs(async_session, locations):
    uk = await locations.resolve(async_session, {"name": "O2", "city_name": "London", "country": "UK"})
    ca = await locations.resolve(async_session, {"name": "Budweiser Gardens", "city_name": "London", "country": "Canada"})
    await async_session.commit()

    slugs = {(await async_session.get(City, v.city_id)).slug for v in (uk, ca)}
    assert slugs == {"london", "london-ca"}


async def test_creates_city_with_coordinates(async_session, locations):
    venue = await locations.resolve(
        async_session,
        {
            "name": "Komedia",
            "address": "44-47 Gardner St, Brighton, BN1 1UN",
            "city_name": "Brighton",
            "country_name": "United Kingdom",
            "latitude": 50.8236,
            "longitude": -0.1389,
        },
    )
    await async_session.commit()

    city = await async_session.get(City, venue.city_id)
    assert city.name == "Brighton"
    assert city.slug == "brighton"
    assert city.latitude == Decimal("50.82360000")
    assert venue.address == "44-47 Gardner St, Brighton, BN1 1UN"


async def test_reuses_venue_and_fills_missing_fields(async_session, locations):
    first = await locations.resolve(async_session, {"name": "The Social", "city_name": "London", "country": "UK"})
    second = await locations.resolve(
        async_session,
        {"name": "the social", "city_name": "london", "country": "GB", "lat": 51.5174, "lon": -0.1395, "address": "5 Little Portland St"},
    )
    await async_session.commit()

    assert second.id == first.id
    assert second.latitude == Decimal("51.51740000")
    assert second.address == "5 Little Portland St"
    assert await count(async_session, Venue) == 1


async def test_venue_without_city(async_session, locations):
    venue = await locations.resolve(async_session, {"name": "Online", "city_name": None})
    again = await locations.resolve(async_session, {"name": "online"})
    await async_session.commit()

    assert venue.city_id is None
    assert again.id == venue.id
    assert await count(async_session, City) == 0


async def test_cityless_venue_names_are_unique(async_session):
    async_session.add(Venue(name="Online", name_key="online", slug="online"))
    await async_session.commit()

    async_session.add(Venue(name="ONLINE", name_key="online", slug="online-2"))
    with pytest.raises(IntegrityError):
        await async_session.commit()
    await async_session.rollback()
    assert await count(async_session, Venue) == 1


async def test_unaccented_spelling_finds_existing_city(async_session, locations, poland):
    krakow = City(name="Kraków", slug="krakow", country_id=poland.id, alternate_names=[])
    async_session.add(krakow)
    await async_session.commit()

    venue = await locations.resolve(
        async_session, {"name": "Alchemia", "city_name": "Krakow", "country_name": "Poland"}
    )
    await async_session.commit()

    assert venue.city_id == krakow.id
    assert await count(async_session, City) == 1


class TestCanonicalCityName:
    """Tests for LocationResolver.canonical_city_name."""

    @pytest.mark.parametrize("spelling", ["Warsaw", "warszawa", " Warschau "])
    async def test_known_spellings(self, async_session, locations, warsaw, spelling):
        name = await locations.canonical_city_name(
            async_session, {"name": "Bar Y", "city_name": spelling, "country_name": "Polska"}
        )
        assert name == "Warsaw"

    async def test_unknown_city_or_country_keeps_input(self, async_session, locations, warsaw):
        assert await locations.canonical_city_name(async_session, {"name": "X", "city_name": "Gdansk", "country": "PL"}) == "Gdansk"
        assert await locations.canonical_city_name(async_session, {"name": "X", "city_name": "Warszawa", "country": "DE"}) == "Warszawa"

    async def test_writes_nothing(self, async_session, locations):
        await locations.canonical_city_name(async_session, {"name": "X", "city_name": "Leeds", "country": "UK"})
        assert await count(async_session, Country) == 0
        assert await count(async_session, City) == 0

    async def test_invalid_city(self, async_session, locations):
        assert await locations.canonical_city_name(async_session, {"name": "X", "city_name": "SW18 2SS", "country": "UK"}) is None


@pytest.mark.parametrize("city_name", ["SW18 2SS", "10-16 Botchergate", "425 Burwood Hwy", ""])
async def test_invalid_city_rejected_without_writes(async_session, locations, telemetry, city_name):
    with pytest.raises(InvalidCityNameError) as exc_info:
        await locations.resolve(
            async_session, {"name": "The Griffin", "city_name": city_name, "country_name": "United Kingdom"}
        )

    assert exc_info.value.layer == "resolver"
    assert exc_info.value.kind is ErrorKind.invalid_city_name
    assert str(exc_info.value).startswith("Failed to find or create city: ")
    assert await count(async_session, City) == 0
    assert await count(async_session, Venue) == 0

    rejected = [r for r in telemetry if r["extra"]["telemetry"] == "city_name_rejected"]
    assert len(rejected) == 1
    assert rejected[0]["extra"]["city_name"] == city_name
    assert rejected[0]["extra"]["country_code"] == "GB"


async def test_model_layer_rejects_direct_insert(async_session, poland):
    """City rows validate themselves even when the resolver is bypassed."""
    async_session.add(City(name="00-950", slug="00-950", country_id=poland.id, alternate_names=[]))
    with pytest.raises(InvalidCityNameError) as exc_info:
        await async_session.flush()
    await async_session.rollback()

    assert exc_info.value.layer == "model"
    assert exc_info.value.reason == "postcode"
    assert exc_info.value.country_code == "PL"


async def test_model_layer_rejects_rename(async_session, warsaw):
    warsaw.name = "02-495 Warszawa"
    async_session.add(warsaw)
    with pytest.raises(InvalidCityNameError) as exc_info:
        await async_session.flush()
    await async_session.rollback()

    assert exc_info.value.reason == "embedded_postcode"


async def test_missing_venue_name(async_session, locations):
    with pytest.raises(MissingRequiredFieldError) as exc_info:
        await locations.resolve(async_session, {"city_name": "London", "country": "UK"})
    assert exc_info.value.field == "venue_data.name"


async def test_missing_country(async_session, locations):
    with pytest.raises(MissingRequiredFieldError) as exc_info:
        await locations.resolve(async_session, {"name": "Somewhere", "city_name": "London"})
    assert exc_info.value.field == "country"


async def test_unknown_country(async_session, locations):
    with pytest.raises(MissingRequiredFieldError) as exc_info:
        await locations.resolve(async_session, {"name": "Somewhere", "city_name": "Lost City", "country": "Atlantis"})
    assert exc_info.value.context["value"] == "Atlantis"
