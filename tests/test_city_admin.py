"""Tests for city administration actions."""

import pytest
from sqlalchemy import insert

from catalog.models import City, Country, Event, Venue
from catalog.services import city_admin
from catalog.services.city_admin import CityAdminError


@pytest.fixture
async def gb(async_session):
    country = Country(name="United Kingdom", code="GB", slug="united-kingdom")
    async_session.add(country)
    await async_session.commit()
    return country


async def make_city(session, country, name, slug=None, **fields):
    city = City(name=name, slug=slug or name.lower(), country_id=country.id, alternate_names=[], **fields)
    session.add(city)
    await session.commit()
    return city


async def make_venue(session, city, name, address=None):
    venue = Venue(
        name=name,
        name_key=name.casefold(),
        slug=f"{name}-{city.slug}".lower().replace(" ", "-"),
        city_id=city.id,
        address=address,
    )
    session.add(venue)
    await session.commit()
    return venue


async def insert_unvalidated_city(session, country, name, slug) -> int:
    """Write a city the way legacy imports did, bypassing model validation."""
    result = await session.execute(
        insert(City.__table__).values(name=name, slug=slug, country_id=country.id, alternate_names=[])
    )
    await session.commit()
    return result.inserted_primary_key[0]


class TestAlternateNames:
    """Tests for add_alternate_name / remove_alternate_name."""

    async def test_add(self, async_session, warsaw):
        city = await city_admin.add_alternate_name(async_session, warsaw, "  Varsovie ")
        assert city.alternate_names == ["Warszawa", "Warschau", "Varsovie"]

    @pytest.mark.parametrize("name,code", [("warszawa", "already_exists"), ("WARSAW", "already_exists"), ("  ", "empty_name")])
    async def test_add_rejected(self, async_session, warsaw, name, code):
        with pytest.raises(CityAdminError) as exc_info:
            await city_admin.add_alternate_name(async_session, warsaw, name)
        assert exc_info.value.code == code

    @pytest.mark.parametrize("name", ["Warszawa", "WARSAW"])
    async def test_add_name_of_another_city_in_same_country(self, async_session, poland, warsaw, name):
        krakow = await make_city(async_session, poland, "Kraków", slug="krakow")
        with pytest.raises(CityAdminError) as exc_info:
            await city_admin.add_alternate_name(async_session, krakow, name)
        assert exc_info.value.code == "used_by_other_city"

    async def test_same_name_allowed_in_another_country(self, async_session, gb, warsaw):
        london = await make_city(async_session, gb, "London")
        city = await city_admin.add_alternate_name(async_session, london, "Warszawa")
        assert city.alternate_names == ["Warszawa"]

    async def test_remove_case_insensitive(self, async_session, warsaw):
        city = await city_admin.remove_alternate_name(async_session, warsaw, "WARSCHAU")
        assert city.alternate_names == ["Warszawa"]

    async def test_remove_unknown(self, async_session, warsaw):
        with pytest.raises(CityAdminError) as exc_info:
            await city_admin.remove_alternate_name(async_session, warsaw, "Varsovie")
        assert exc_info.value.code == "not_found"

    async def test_new_alternate_is_used_by_resolver(self, async_session, locations, warsaw):
        await city_admin.add_alternate_name(async_session, warsaw, "Varsovie")
        venue = await locations.resolve(async_session, {"name": "Klub", "city_name": "varsovie", "country": "PL"})
        assert venue.city_id == warsaw.id


class TestSlugs:
    """Tests for slug_available / update_city_slug."""

    async def test_update(self, async_session, warsaw):
        city = await city_admin.update_city_slug(async_session, warsaw, "Warszawa-PL")
        assert city.slug == "warszawa-pl"
        assert await city_admin.slug_available(async_session, "warsaw")
        assert not await city_admin.slug_available(async_session, "warszawa-pl")
        assert await city_admin.slug_available(async_session, "warszawa-pl", exclude_city_id=warsaw.id)

    async def test_invalid_slug(self, async_session, warsaw):
        with pytest.raises(CityAdminError) as exc_info:
            await city_admin.update_city_slug(async_session, warsaw, "not a slug")
        assert exc_info.value.code == "invalid_slug"

    async def test_taken_slug(self, async_session, gb, warsaw):
        await make_city(async_session, gb, "London")
        with pytest.raises(CityAdminError) as exc_info:
            await city_admin.update_city_slug(async_session, warsaw, "london")
        assert exc_info.value.code == "slug_taken"


class TestDeleteCity:
    """Tests for delete_city."""

    async def test_delete_empty_city(self, async_session, gb):
        city = await make_city(async_session, gb, "Leeds")
        await city_admin.delete_city(async_session, city.id)
        assert await async_session.get(City, city.id) is None

    async def test_refuses_city_with_venues(self, async_session, gb):
        city = await make_city(async_session, gb, "Leeds")
        await make_venue(async_session, city, "Brudenell Social Club")
        with pytest.raises(CityAdminError) as exc_info:
            await city_admin.delete_city(async_session, city.id)
        assert exc_info.value.code == "has_venues"


class TestInvalidCities:
    """Cleanup of cities written before validation existed."""

    async def test_find_invalid_cities(self, async_session, gb):
        await make_city(async_session, gb, "Carlisle")
        bad_id = await insert_unvalidated_city(async_session, gb, "10-16 Botchergate", "10-16-botchergate")
        postcode_id = await insert_unvalidated_city(async_session, gb, "SW18 2SS", "sw18-2ss")

        invalid = await city_admin.find_invalid_cities(async_session)
        assert [(city.id, reason) for city, reason in invalid] == [
            (bad_id, "street_address"),
            (postcode_id, "postcode"),
        ]

    async def test_suggest_replacement_creates_city(self, async_session, gb):
        bad_id = await insert_unvalidated_city(async_session, gb, "10-16 Botchergate", "10-16-botchergate")
        bad = await async_session.get(City, bad_id)
        await make_venue(async_session, bad, "The Griffin", address="10-16 Botchergate, Carlisle, CA1 1QS")
        await make_venue(async_session, bad, "Walkabout", address="Botchergate, Carlisle")

        replacement = await city_admin.suggest_replacement_city(async_session, bad)
        assert replacement.name == "Carlisle"
        assert replacement.country_id == gb.id
        assert replacement.id != bad_id

        again = await city_admin.suggest_replacement_city(async_session, bad)
        assert again.id == replacement.id

    async def test_suggest_without_addresses(self, async_session, gb):
        bad_id = await insert_unvalidated_city(async_session, gb, "E5", "e5")
        bad = await async_session.get(City, bad_id)
        with pytest.raises(CityAdminError) as exc_info:
            await city_admin.suggest_replacement_city(async_session, bad)
        assert exc_info.value.code == "no_replacement_found"


class TestMergeCities:
    """Tests for merge_cities."""

    async def test_merge_moves_and_merges_venues(self, async_session, gb):
        london = await make_city(async_session, gb, "London")
        londres = await make_city(async_session, gb, "Londres")
        kept = await make_venue(async_session, london, "The Social")
        duplicate = await make_venue(async_session, londres, "the social")
        moved = await make_venue(async_session, londres, "Oslo Hackney")

        event = Event(title="Indie Night", venue_id=duplicate.id, fingerprint="f" * 64)
        async_session.add(event)
        await async_session.commit()
        londres_id, kept_id, duplicate_id, moved_id, event_id = londres.id, kept.id, duplicate.id, moved.id, event.id

        result = await city_admin.merge_cities(async_session, london.id, [londres.id])

        assert result["merged_city_ids"] == [londres_id]
        assert result["venues_moved"] == 1
        assert result["venues_merged"] == 1
        assert result["alternate_names"] == ["Londres"]

        assert await async_session.get(City, londres_id) is None
        assert await async_session.get(Venue, duplicate_id) is None
        moved = await async_session.get(Venue, moved_id, populate_existing=True)
        assert moved.city_id == london.id
        event = await async_session.get(Event, event_id, populate_existing=True)
        assert event.venue_id == kept_id

    async def test_invalid_source_names_are_not_kept(self, async_session, gb):
        london = await make_city(async_session, gb, "London")
        bad_id = await insert_unvalidated_city(async_session, gb, "SW18 2SS", "sw18-2ss")

        result = await city_admin.merge_cities(async_session, london.id, [bad_id])
        assert result["alternate_names"] == []

    async def test_without_alternates(self, async_session, gb):
        london = await make_city(async_session, gb, "London")
        londres = await make_city(async_session, gb, "Londres")
        result = await city_admin.merge_cities(async_session, london.id, [londres.id], add_as_alternates=False)
        assert result["alternate_names"] == []

    async def test_refuses_cross_country(self, async_session, gb, warsaw):
        london = await make_city(async_session, gb, "London")
        with pytest.raises(CityAdminError) as exc_info:
            await city_admin.merge_cities(async_session, london.id, [warsaw.id])
        assert exc_info.value.code == "cities_must_be_in_same_country"

    async def test_refuses_unknown_source(self, async_session, gb):
        london = await make_city(async_session, gb, "London")
        with pytest.raises(CityAdminError) as exc_info:
            await city_admin.merge_cities(async_session, london.id, [12345])
        assert exc_info.value.code == "source_city_not_found"

    async def test_refuses_self_merge(self, async_session, gb):
        london = await make_city(async_session, gb, "London")
        with pytest.raises(CityAdminError) as exc_info:
            await city_admin.merge_cities(async_session, london.id, [london.id])
        assert exc_info.value.code == "no_sources"

    async def test_unknown_target(self, async_session, gb):
        londres = await make_city(async_session, gb, "Londres")
        with pytest.raises(CityAdminError) as exc_info:
            await city_admin.merge_cities(async_session, 999, [londres.id])
        assert exc_info.value.code == "not_found"


async def test_find_invalid_cities_empty(async_session, gb):
    await make_city(async_session, gb, "Bristol")
    assert await city_admin.find_invalid_cities(async_session) == []
