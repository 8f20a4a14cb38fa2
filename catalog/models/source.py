"""Scraper source model."""

from datetime import datetime

from sqlmodel import Field, SQLModel

from catalog.models.common import utc_now


class SourceBase(SQLModel):
    """Base model for scraper sources."""

    name: str = Field(max_length=128)
    slug: str = Field(max_length=128, unique=True, index=True)
    # Higher priority sources win when display fields (title casing, image) disagree
    priority: int = Field(default=50)
    website_url: str | None = Field(default=None, max_length=512)


class Source(SourceBase, table=True):
    """A scraper feeding the catalog (cinema chain, ticketing site, ...)."""

    __tablename__ = "source"

    id: int | None = Field(default=None, primary_key=True)
    created_at: datetime = Field(default_factory=utc_now)


class SourceRead(SourceBase):
    """Schema for reading a source."""

    id: int
