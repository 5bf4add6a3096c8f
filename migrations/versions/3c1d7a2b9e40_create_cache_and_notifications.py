# File: migrations/versions/3c1d7a2b9e40_create_cache_and_notifications.py

"""Create local cache and pending notifications tables

Revision ID: 3c1d7a2b9e40
Revises:
Create Date: 2024-06-02 10:12:31.118204
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '3c1d7a2b9e40'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # Caché clave-valor (JSON) del estado de la sala
    op.create_table(
        'cache_entries',
        sa.Column('key', sa.String(length=120), primary_key=True),
        sa.Column('value', sa.Text(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )

    op.create_table(
        'pending_notifications',
        sa.Column('id', sa.String(length=120), primary_key=True),
        sa.Column('category', sa.String(length=40), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('body', sa.String(length=500), nullable=False),
        sa.Column('fire_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_pending_notifications_category', 'pending_notifications', ['category'])
    op.create_index('ix_pending_notifications_fire_at', 'pending_notifications', ['fire_at'])


def downgrade():
    op.drop_index('ix_pending_notifications_fire_at', table_name='pending_notifications')
    op.drop_index('ix_pending_notifications_category', table_name='pending_notifications')
    op.drop_table('pending_notifications')
    op.drop_table('cache_entries')
