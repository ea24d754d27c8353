"""Initial schema for podcasts and episodes

Revision ID: 001
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create podcasts table
    op.create_table(
        'podcasts',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('feed_url', sa.String(2048), unique=True, nullable=False),
        sa.Column('catalog_id', sa.String(64), nullable=True),
        sa.Column('title', sa.String(512), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('artwork_url', sa.String(2048), nullable=True),
        sa.Column('last_refresh_at', sa.BigInteger, nullable=False, server_default='0'),
        sa.Column('created_at', sa.BigInteger, nullable=False),
    )
    op.create_index('ix_podcasts_feed_url', 'podcasts', ['feed_url'])

    # Create episodes table
    op.create_table(
        'episodes',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('podcast_id', sa.String(36), sa.ForeignKey('podcasts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('guid', sa.String(2048), nullable=False),
        sa.Column('title', sa.String(512), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('link', sa.String(2048), nullable=True),
        sa.Column('published_at', sa.BigInteger, nullable=False, server_default='0'),
        sa.Column('fetched_at', sa.BigInteger, nullable=False),
        sa.Column('duration_seconds', sa.Integer, nullable=True),
        sa.Column('chapters_url', sa.String(2048), nullable=True),
        sa.Column('artwork_url', sa.String(2048), nullable=True),
        sa.Column('enclosure_url', sa.String(2048), nullable=True),
        sa.Column('enclosure_type', sa.String(64), nullable=True),
        sa.Column('enclosure_length', sa.BigInteger, nullable=True),
        sa.Column('state', sa.String(16), nullable=False, server_default='NEW'),
        sa.Column('session_grace', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('viewed_at', sa.BigInteger, nullable=True),
        sa.Column('saved_at', sa.BigInteger, nullable=True),
        sa.Column('played_at', sa.BigInteger, nullable=True),
        sa.Column('playback_position', sa.Integer, nullable=True),
        sa.Column('download_path', sa.String(1024), nullable=True),
        sa.Column('downloaded_at', sa.BigInteger, nullable=True),
        sa.UniqueConstraint('podcast_id', 'guid', name='uq_episode_podcast_guid'),
    )
    op.create_index('ix_episodes_state', 'episodes', ['state'])
    op.create_index('ix_episodes_podcast_state', 'episodes', ['podcast_id', 'state'])
    op.create_index('ix_episodes_fetched_at', 'episodes', ['fetched_at'])
    op.create_index('ix_episodes_published_at', 'episodes', ['published_at'])


def downgrade() -> None:
    op.drop_index('ix_episodes_published_at', table_name='episodes')
    op.drop_index('ix_episodes_fetched_at', table_name='episodes')
    op.drop_index('ix_episodes_podcast_state', table_name='episodes')
    op.drop_index('ix_episodes_state', table_name='episodes')
    op.drop_table('episodes')
    op.drop_index('ix_podcasts_feed_url', table_name='podcasts')
    op.drop_table('podcasts')
