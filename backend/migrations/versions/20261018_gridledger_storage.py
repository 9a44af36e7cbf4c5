"""Counter and cache storage: script_properties and cache_entries

Revision ID: 20261018_storage
Revises:
Create Date: 2026-10-18

This migration adds:
1. script_properties (durable sequence counters, key -> text value)
2. cache_entries (serialized read-cache entries with absolute expiry)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261018_storage'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. SCRIPT PROPERTIES TABLE
    # ==========================================================================
    op.create_table('script_properties',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('key', sa.String(length=191), nullable=False),
        sa.Column('value', sa.Text(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_script_properties_key', 'script_properties', ['key'], unique=True)

    # ==========================================================================
    # 2. CACHE ENTRIES TABLE
    # ==========================================================================
    op.create_table('cache_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('key', sa.String(length=191), nullable=False),
        sa.Column('value', sa.Text(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_cache_entries_key', 'cache_entries', ['key'], unique=True)
    op.create_index('ix_cache_entries_expires_at', 'cache_entries', ['expires_at'], unique=False)


def downgrade():
    op.drop_index('ix_cache_entries_expires_at', table_name='cache_entries')
    op.drop_index('ix_cache_entries_key', table_name='cache_entries')
    op.drop_table('cache_entries')

    op.drop_index('ix_script_properties_key', table_name='script_properties')
    op.drop_table('script_properties')
