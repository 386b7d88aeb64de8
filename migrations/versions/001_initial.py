"""Initial media catalog schema

Revision ID: 001_initial
Revises: 
Create Date: 2026-10-19

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
    """Create album and media_asset."""

    # Create custom ENUM types
    op.execute("CREATE TYPE album_visibility AS ENUM ('public', 'private')")
    op.execute(
        "CREATE TYPE media_kind AS ENUM ('profile_image', 'album_cover', 'image', 'video')")
    op.execute(
        "CREATE TYPE asset_state AS ENUM "
        "('reserved', 'ingesting', 'pending_external', 'complete', 'flagged', 'failed')")
    op.execute("CREATE TYPE moderation_status AS ENUM ('pending', 'clean', 'flagged')")

    # Define ENUM types for reuse (create_type=False since we created them above)
    visibility_enum = postgresql.ENUM(
        'public', 'private', name='album_visibility', create_type=False)
    media_kind_enum = postgresql.ENUM(
        'profile_image', 'album_cover', 'image', 'video', name='media_kind', create_type=False)
    asset_state_enum = postgresql.ENUM(
        'reserved', 'ingesting', 'pending_external', 'complete', 'flagged', 'failed',
        name='asset_state', create_type=False)
    moderation_enum = postgresql.ENUM(
        'pending', 'clean', 'flagged', name='moderation_status', create_type=False)

    # Create album table (cover FK added once media_asset exists)
    op.create_table(
        'album',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('owner_id', sa.String(255), nullable=False),
        sa.Column('visibility', visibility_enum, nullable=False,
                  server_default='private'),
        sa.Column('cover_asset_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False,
                  server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(), nullable=False,
                  server_default=sa.text('NOW()')),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
    )
    op.create_index('idx_album_owner_id', 'album', ['owner_id'])

    # Create media_asset table
    op.create_table(
        'media_asset',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('storage_key', sa.String(1024), nullable=False, unique=True),
        sa.Column('url', sa.Text(), nullable=False),
        sa.Column('content_type', sa.String(255), nullable=True),
        sa.Column('kind', media_kind_enum, nullable=False),
        sa.Column('owner_id', sa.String(255), nullable=False),
        sa.Column('album_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('album.id', ondelete='SET NULL'), nullable=True),
        sa.Column('state', asset_state_enum, nullable=False,
                  server_default='reserved'),
        sa.Column('moderation', moderation_enum, nullable=False,
                  server_default='pending'),
        sa.Column('tags', postgresql.JSONB(), nullable=False,
                  server_default=sa.text("'[]'::jsonb")),
        sa.Column('thumbnail_url', sa.Text(), nullable=True),
        sa.Column('stream_url', sa.Text(), nullable=True),
        sa.Column('metadata', postgresql.JSONB(), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False,
                  server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(), nullable=False,
                  server_default=sa.text('NOW()')),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_media_asset_owner_id', 'media_asset', ['owner_id'])
    op.create_index('ix_media_asset_album_id', 'media_asset', ['album_id'])
    op.create_index('idx_media_asset_owner_created', 'media_asset', ['owner_id', 'created_at'])
    op.create_index('idx_media_asset_state', 'media_asset', ['state'])

    # Deleting the cover asset clears the reference, never the album
    op.create_foreign_key(
        'fk_album_cover_asset', 'album', 'media_asset',
        ['cover_asset_id'], ['id'], ondelete='SET NULL')


def downgrade() -> None:
    """Drop all tables and types."""
    op.drop_constraint('fk_album_cover_asset', 'album', type_='foreignkey')
    op.drop_table('media_asset')
    op.drop_table('album')

    op.execute('DROP TYPE IF EXISTS moderation_status')
    op.execute('DROP TYPE IF EXISTS asset_state')
    op.execute('DROP TYPE IF EXISTS media_kind')
    op.execute('DROP TYPE IF EXISTS album_visibility')
