"""Initial schema - Baseline migration

Revision ID: 001_initial
Revises:
Create Date: 2024-12-01 00:00:00.000000

Creates the plates, vehicles, anpr_events, lists and list_items tables and
seeds the default whitelist and blacklist. Matches database/models.py.
For databases bootstrapped by the API at startup, use
`alembic stamp 001_initial` to mark as applied.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create initial database schema."""

    # Create plates table
    op.create_table(
        'plates',
        sa.Column('id', sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column('number', sa.Text, nullable=False),
        sa.Column('normalized', sa.Text, nullable=False),
        sa.Column('country', sa.Text),
        sa.Column('region', sa.Text),
        sa.Column('created_at', sa.DateTime(timezone=True),
                  server_default=sa.text('NOW()'), nullable=False),
    )

    # Create vehicles table
    op.create_table(
        'vehicles',
        sa.Column('id', sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column('plate_id', sa.BigInteger,
                  sa.ForeignKey('plates.id')),
        sa.Column('make', sa.Text),
        sa.Column('model', sa.Text),
        sa.Column('color', sa.Text),
        sa.Column('body_type', sa.Text),
        sa.Column('notes', sa.Text),
        sa.Column('created_at', sa.DateTime(timezone=True),
                  server_default=sa.text('NOW()'), nullable=False),
    )

    # Create anpr_events table
    op.create_table(
        'anpr_events',
        sa.Column('id', sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column('plate_id', sa.BigInteger,
                  sa.ForeignKey('plates.id')),
        sa.Column('camera_id', sa.Text, nullable=False),
        sa.Column('camera_model', sa.Text),
        sa.Column('direction', sa.Text),
        sa.Column('lane', sa.Integer),
        sa.Column('raw_plate', sa.Text, nullable=False),
        sa.Column('normalized_plate', sa.Text, nullable=False),
        sa.Column('confidence', sa.Numeric(5, 2)),
        sa.Column('vehicle_color', sa.Text),
        sa.Column('vehicle_type', sa.Text),
        sa.Column('snapshot_url', sa.Text),
        sa.Column('event_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('raw_payload', postgresql.JSONB),
        sa.Column('created_at', sa.DateTime(timezone=True),
                  server_default=sa.text('NOW()'), nullable=False),
    )

    # Create lists table
    op.create_table(
        'lists',
        sa.Column('id', sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column('name', sa.Text, nullable=False),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('created_at', sa.DateTime(timezone=True),
                  server_default=sa.text('NOW()'), nullable=False),
        sa.CheckConstraint("type IN ('WHITELIST', 'BLACKLIST')", name='ck_lists_type'),
    )

    # Create list_items table
    op.create_table(
        'list_items',
        sa.Column('list_id', sa.BigInteger,
                  sa.ForeignKey('lists.id'), primary_key=True),
        sa.Column('plate_id', sa.BigInteger,
                  sa.ForeignKey('plates.id'), primary_key=True),
        sa.Column('note', sa.Text),
        sa.Column('created_at', sa.DateTime(timezone=True),
                  server_default=sa.text('NOW()'), nullable=False),
    )

    # Create indexes
    op.create_index('ux_plates_normalized', 'plates', ['normalized'], unique=True)
    op.create_index('idx_anpr_events_plate_id', 'anpr_events', ['plate_id'])
    op.create_index('idx_anpr_events_event_time', 'anpr_events', ['event_time'])
    op.create_index('ux_lists_name', 'lists', ['name'], unique=True)

    # Insert default lists
    op.execute("""
        INSERT INTO lists (name, type, description)
        VALUES
            ('default_whitelist', 'WHITELIST', 'Default whitelist'),
            ('default_blacklist', 'BLACKLIST', 'Default blacklist')
        ON CONFLICT (name) DO NOTHING
    """)


def downgrade() -> None:
    """Drop all tables."""
    # Drop tables in reverse order
    op.drop_table('list_items')
    op.drop_table('lists')
    op.drop_table('anpr_events')
    op.drop_table('vehicles')
    op.drop_table('plates')
