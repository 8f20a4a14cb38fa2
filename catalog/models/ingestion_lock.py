"""Lease table backing the fingerprint lock on databases without advisory locks."""

from datetime import datetime

from sqlalchemy import BigInteger, Column
from sqlmodel import Field, SQLModel


class IngestionLock(SQLModel, table=True):
    """A held lock. The primary key makes acquisition an atomic insert."""

    __tablename__ = "ingestion_lock"

    key: int = Field(sa_column=Column(BigInteger, primary_key=True, autoincrement=False))
    owner: str = Field(max_length=64)
    acquired_at: datetime
    # Leases from crashed workers are reclaimed after this point
    expires_at: datetime = Field(index=True)
