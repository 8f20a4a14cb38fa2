"""Pytest fixtures for testing."""

from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient
from loguru import logger
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

import catalog.models  # noqa: F401
from catalog.cache import TTLCache
from catalog.database import configure_sqlite_engine, get_session, writer_engine
from catalog.models import City, Country, Source
from catalog.services.countries import CountryResolver
from catalog.services.ingestion import IngestionCoordinator
from catalog.services.locations import LocationResolver
from catalog.services.locks import TableLeaseLock
from catalog.telemetry import is_telemetry


@pytest.fixture
def anyio_backend():
    """Use asyncio backend for pytest-asyncio."""
    return "asyncio"


@pytest.fixture
async def async_engine(tmp_path):
    """File-backed SQLite engine: concurrent sessions need separate connections."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}",
        echo=False,
        future=True,
        poolclass=NullPool,
        connect_args={"timeout": 60},
    )
    configure_sqlite_engine(engine)
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine):
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def writer_session_factory(async_engine):
    """Sessions that open SQLite transactions with BEGIN IMMEDIATE."""
    return async_sessionmaker(writer_engine(async_engine), class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def async_session(session_factory):
    """Create an async session for testing."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def countries():
    return CountryResolver(TTLCache(ttl_seconds=60))


@pytest.fixture
def locations(countries):
    return LocationResolver(countries)


@pytest.fixture
def coordinator(async_engine, session_factory, writer_session_factory, locations):
    lock = TableLeaseLock(async_engine, timeout=30.0, poll_interval=0.01)
    return IngestionCoordinator(
        writer_session_factory, lock, locations, lock_timeout=30.0, read_session_factory=session_factory
    )


@pytest.fixture
async def source(async_session):
    source = Source(name="Question One", slug="question-one", priority=50)
    async_session.add(source)
    await async_session.commit()
    await async_session.refresh(source)
    # End the read transaction refresh() opened
    await async_session.commit()
    return source


@pytest.fixture
async def poland(async_session):
    country = Country(name="Poland", code="PL", slug="poland")
    async_session.add(country)
    await async_session.commit()
    await async_session.refresh(country)
    await async_session.commit()
    return country


@pytest.fixture
async def warsaw(async_session, poland):
    city = City(
        name="Warsaw",
        slug="warsaw",
        country_id=poland.id,
        latitude=Decimal("52.22970000"),
        longitude=Decimal("21.01220000"),
        alternate_names=["Warszawa", "Warschau"],
    )
    async_session.add(city)
    await async_session.commit()
    await async_session.refresh(city)
    await async_session.commit()
    return city


@pytest.fixture
def telemetry():
    """Collect telemetry records emitted during the test."""
    records = []
    handler_id = logger.add(lambda message: records.append(message.record), filter=is_telemetry, level="DEBUG")
    yield records
    logger.remove(handler_id)


@pytest.fixture
async def app(async_session):
    """Create test application with overridden dependencies."""
    from catalog.main import create_app

    app = create_app()

    async def override_get_session():
        yield async_session

    app.dependency_overrides[get_session] = override_get_session
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
async def client(app):
    """Create async test client."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as client:
        yield client
