"""City model.

City names are validated on every insert, and on every update that touches
``name`` or ``country_id``, by mapper events registered at the bottom of this
module. Any code path that flushes a City goes through them.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, event, inspect, select
from sqlmodel import Column, Field, SQLModel

from catalog.models.common import utc_now
from catalog.models.country import Country
from catalog.services.city_names import ensure_valid_city_name


class CityBase(SQLModel):
    """Base model for cities."""

    name: str = Field(max_length=128, index=True)
    slug: str = Field(max_length=160, unique=True, index=True)
    country_id: int = Field(foreign_key="country.id", index=True)

    # Location (for metro-area clustering)
    latitude: Decimal | None = Field(default=None, max_digits=10, decimal_places=8)
    longitude: Decimal | None = Field(default=None, max_digits=11, decimal_places=8)

    # Other spellings/translations matched case-insensitively within the country
    # e.g. Warsaw: ["Warszawa", "Warschau"]
    alternate_names: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))


class City(CityBase, table=True):
    """City record."""

    __tablename__ = "city"

    id: int | None = Field(default=None, primary_key=True)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def matches(self, name: str) -> bool:
        """True when ``name`` is the canonical name or an alternate name (case-insensitive)."""
        wanted = " ".join(name.split()).casefold()
        if self.name.casefold() == wanted:
            return True
        return any(alt.casefold() == wanted for alt in self.alternate_names or [])


class CityRead(CityBase):
    """Schema for reading a city."""

    id: int
    created_at: datetime
    updated_at: datetime


def _country_code(connection, country_id: int | None) -> str | None:
    if country_id is None:
        return None
    return connection.execute(
        select(Country.code).where(Country.id == country_id)
    ).scalar_one_or_none()


@event.listens_for(City, "before_insert")
def _validate_city_on_insert(mapper, connection, target: City) -> None:
    target.name = ensure_valid_city_name(
        target.name, _country_code(connection, target.country_id), layer="model"
    )


@event.listens_for(City, "before_update")
def _validate_city_on_update(mapper, connection, target: City) -> None:
    state = inspect(target)
    if not (state.attrs.name.history.has_changes() or state.attrs.country_id.history.has_changes()):
        return
    target.name = ensure_valid_city_name(
        target.name, _country_code(connection, target.country_id), layer="model"
    )
    target.updated_at = utc_now()
