"""unique_cityless_venue_name

Revision ID: 3e5b7c9a1d42
Revises: 8c1f2a4d9e07
Create Date: 2026-10-19 10:02:51.114380

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3e5b7c9a1d42'
down_revision: Union[str, Sequence[str], None] = '8c1f2a4d9e07'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    # uq_venue_city_name_key never fires for NULL city_id
    op.create_index(
        'uq_venue_name_key_without_city',
        'venue',
        ['name_key'],
        unique=True,
        sqlite_where=sa.text('city_id IS NULL'),
        postgresql_where=sa.text('city_id IS NULL'),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('uq_venue_name_key_without_city', table_name='venue')
