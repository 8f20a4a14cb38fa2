"""Country reference data."""

from datetime import datetime

from sqlmodel import Field, SQLModel

from catalog.models.common import utc_now


class CountryBase(SQLModel):
    """Base model for countries."""

    name: str = Field(max_length=128)
    # ISO 3166-1 alpha-2
    code: str = Field(max_length=2, unique=True, index=True)
    slug: str = Field(max_length=128, unique=True, index=True)


class Country(CountryBase, table=True):
    """Country record. Created lazily the first time a scraper mentions it."""

    __tablename__ = "country"

    id: int | None = Field(default=None, primary_key=True)
    created_at: datetime = Field(default_factory=utc_now)


class CountryRead(CountryBase):
    """Schema for reading a country."""

    id: int
