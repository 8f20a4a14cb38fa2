"""initial_catalog_schema

Revision ID: 8c1f2a4d9e07
Revises:
Create Date: 2026-10-12 09:14:27.518204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
import sqlmodel


# revision identifiers, used by Alembic.
revision: str = '8c1f2a4d9e07'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'country',
        sa.Column('name', sqlmodel.sql.sqltypes.AutoString(length=128), nullable=False),
        sa.Column('code', sqlmodel.sql.sqltypes.AutoString(length=2), nullable=False),
        sa.Column('slug', sqlmodel.sql.sqltypes.AutoString(length=128), nullable=False),
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_country_code'), 'country', ['code'], unique=True)
    op.create_index(op.f('ix_country_slug'), 'country', ['slug'], unique=True)

    op.create_table(
        'city',
        sa.Column('name', sqlmodel.sql.sqltypes.AutoString(length=128), nullable=False),
        sa.Column('slug', sqlmodel.sql.sqltypes.AutoString(length=160), nullable=False),
        sa.Column('country_id', sa.Integer(), nullable=False),
        sa.Column('latitude', sa.Numeric(precision=10, scale=8), nullable=True),
        sa.Column('longitude', sa.Numeric(precision=11, scale=8), nullable=True),
        sa.Column('alternate_names', sa.JSON(), nullable=False),
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['country_id'], ['country.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_city_name'), 'city', ['name'], unique=False)
    op.create_index(op.f('ix_city_slug'), 'city', ['slug'], unique=True)
    op.create_index(op.f('ix_city_country_id'), 'city', ['country_id'], unique=False)

    op.create_table(
        'venue',
        sa.Column('name', sqlmodel.sql.sqltypes.AutoString(length=255), nullable=False),
        sa.Column('slug', sqlmodel.sql.sqltypes.AutoString(length=300), nullable=False),
        sa.Column('address', sqlmodel.sql.sqltypes.AutoString(length=512), nullable=True),
        sa.Column('city_id', sa.Integer(), nullable=True),
        sa.Column('latitude', sa.Numeric(precision=10, scale=8), nullable=True),
        sa.Column('longitude', sa.Numeric(precision=11, scale=8), nullable=True),
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name_key', sqlmodel.sql.sqltypes.AutoString(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['city_id'], ['city.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('city_id', 'name_key', name='uq_venue_city_name_key'),
    )
    op.create_index(op.f('ix_venue_slug'), 'venue', ['slug'], unique=True)
    op.create_index(op.f('ix_venue_city_id'), 'venue', ['city_id'], unique=False)
    op.create_index(op.f('ix_venue_name_key'), 'venue', ['name_key'], unique=False)

    op.create_table(
        'source',
        sa.Column('name', sqlmodel.sql.sqltypes.AutoString(length=128), nullable=False),
        sa.Column('slug', sqlmodel.sql.sqltypes.AutoString(length=128), nullable=False),
        sa.Column('priority', sa.Integer(), nullable=False),
        sa.Column('website_url', sqlmodel.sql.sqltypes.AutoString(length=512), nullable=True),
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_source_slug'), 'source', ['slug'], unique=True)

    op.create_table(
        'event',
        sa.Column('title', sqlmodel.sql.sqltypes.AutoString(length=512), nullable=False),
        sa.Column('kind', sa.Enum('single', 'multi_date', 'showtime', 'recurring', name='eventkind'), nullable=False),
        sa.Column('venue_id', sa.Integer(), nullable=True),
        sa.Column('starts_at', sa.DateTime(), nullable=True),
        sa.Column('ends_at', sa.DateTime(), nullable=True),
        sa.Column('image_url', sqlmodel.sql.sqltypes.AutoString(length=2048), nullable=True),
        sa.Column('source_priority', sa.Integer(), nullable=False),
        sa.Column('extra_metadata', sa.JSON(), nullable=True),
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('fingerprint', sqlmodel.sql.sqltypes.AutoString(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('last_seen_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['venue_id'], ['venue.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_event_kind'), 'event', ['kind'], unique=False)
    op.create_index(op.f('ix_event_venue_id'), 'event', ['venue_id'], unique=False)
    op.create_index(op.f('ix_event_starts_at'), 'event', ['starts_at'], unique=False)
    op.create_index(op.f('ix_event_fingerprint'), 'event', ['fingerprint'], unique=True)

    op.create_table(
        'event_occurrence',
        sa.Column('starts_at', sa.DateTime(), nullable=False),
        sa.Column('ends_at', sa.DateTime(), nullable=True),
        sa.Column('timed', sa.Boolean(), nullable=False),
        sa.Column('external_id', sqlmodel.sql.sqltypes.AutoString(length=512), nullable=True),
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_id', sa.Integer(), nullable=False),
        sa.Column('occurrence_key', sqlmodel.sql.sqltypes.AutoString(length=20), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['event_id'], ['event.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('event_id', 'occurrence_key', name='uq_occurrence_event_key'),
    )
    op.create_index(op.f('ix_event_occurrence_event_id'), 'event_occurrence', ['event_id'], unique=False)

    op.create_table(
        'event_source',
        sa.Column('source_id', sa.Integer(), nullable=False),
        sa.Column('external_id', sqlmodel.sql.sqltypes.AutoString(length=512), nullable=False),
        sa.Column('source_url', sqlmodel.sql.sqltypes.AutoString(length=2048), nullable=True),
        sa.Column('priority', sa.Integer(), nullable=False),
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_id', sa.Integer(), nullable=False),
        sa.Column('first_seen_at', sa.DateTime(), nullable=False),
        sa.Column('last_seen_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['event_id'], ['event.id']),
        sa.ForeignKeyConstraint(['source_id'], ['source.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('source_id', 'external_id', name='uq_event_source_external_id'),
    )
    op.create_index(op.f('ix_event_source_source_id'), 'event_source', ['source_id'], unique=False)
    op.create_index(op.f('ix_event_source_event_id'), 'event_source', ['event_id'], unique=False)

    op.create_table(
        'ingestion_lock',
        sa.Column('key', sa.BigInteger(), autoincrement=False, nullable=False),
        sa.Column('owner', sqlmodel.sql.sqltypes.AutoString(length=64), nullable=False),
        sa.Column('acquired_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('key'),
    )
    op.create_index(op.f('ix_ingestion_lock_expires_at'), 'ingestion_lock', ['expires_at'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index(op.f('ix_ingestion_lock_expires_at'), table_name='ingestion_lock')
    op.drop_table('ingestion_lock')
    op.drop_index(op.f('ix_event_source_event_id'), table_name='event_source')
    op.drop_index(op.f('ix_event_source_source_id'), table_name='event_source')
    op.drop_table('event_source')
    op.drop_index(op.f('ix_event_occurrence_event_id'), table_name='event_occurrence')
    op.drop_table('event_occurrence')
    op.drop_index(op.f('ix_event_fingerprint'), table_name='event')
    op.drop_index(op.f('ix_event_starts_at'), table_name='event')
    op.drop_index(op.f('ix_event_venue_id'), table_name='event')
    op.drop_index(op.f('ix_event_kind'), table_name='event')
    op.drop_table('event')
    sa.Enum(name='eventkind').drop(op.get_bind(), checkfirst=True)
    op.drop_index(op.f('ix_source_slug'), table_name='source')
    op.drop_table('source')
    op.drop_index(op.f('ix_venue_name_key'), table_name='venue')
    op.drop_index(op.f('ix_venue_city_id'), table_name='venue')
    op.drop_index(op.f('ix_venue_slug'), table_name='venue')
    op.drop_table('venue')
    op.drop_index(op.f('ix_city_country_id'), table_name='city')
    op.drop_index(op.f('ix_city_slug'), table_name='city')
    op.drop_index(op.f('ix_city_name'), table_name='city')
    op.drop_table('city')
    op.drop_index(op.f('ix_country_slug'), table_name='country')
    op.drop_index(op.f('ix_country_code'), table_name='country')
    op.drop_table('country')
