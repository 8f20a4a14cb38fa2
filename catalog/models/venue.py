"""Venue model."""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Index, UniqueConstraint, text
from sqlmodel import Field, SQLModel

from catalog.models.common import utc_now


class VenueBase(SQLModel):
    """Base model for venues."""

    name: str = Field(max_length=255)
    slug: str = Field(max_length=300, unique=True, index=True)
    address: str | None = Field(default=None, max_length=512)

    # Venues without a city are allowed (online events, unknown locality)
    city_id: int | None = Field(default=None, foreign_key="city.id", index=True)

    latitude: Decimal | None = Field(default=None, max_digits=10, decimal_places=8)
    longitude: Decimal | None = Field(default=None, max_digits=11, decimal_places=8)


class Venue(VenueBase, table=True):
    """Venue record. One row per distinct (name, city)."""

    __tablename__ = "venue"
    __table_args__ = (
        UniqueConstraint("city_id", "name_key", name="uq_venue_city_name_key"),
        # NULLs never collide in the constraint above
        Index(
            "uq_venue_name_key_without_city",
            "name_key",
            unique=True,
            sqlite_where=text("city_id IS NULL"),
            postgresql_where=text("city_id IS NULL"),
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    # Case-folded name used for the (name, city) identity
    name_key: str = Field(max_length=255, index=True)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class VenueRead(VenueBase):
    """Schema for reading a venue."""

    id: int
