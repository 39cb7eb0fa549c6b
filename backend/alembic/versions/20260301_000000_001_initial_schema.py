"""Initial schema - Dester 0.4.0

Revision ID: 001
Revises: None
Create Date: 2026-03-01

Creates the media library and scan job tables. Fresh installs also get
them from SQLAlchemy create_all(); this revision lets existing databases
be stamped and migrated forward.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


MEDIA_TYPE = sa.Enum('MOVIE', 'TV_SHOW', 'MUSIC', 'COMIC', name='mediatype')
SCAN_JOB_STATUS = sa.Enum('PENDING', 'RUNNING', 'COMPLETED', 'FAILED', 'CANCELLED', name='scanjobstatus')
METADATA_STATUS = sa.Enum('NOT_STARTED', 'PENDING', 'IN_PROGRESS', 'COMPLETED', 'FAILED', name='metadatastatus')
EXTERNAL_ID_SOURCE = sa.Enum(
    'TMDB', 'IMDB', 'TVDB', 'ANIDB', 'ANILIST', 'MYANIMELIST', 'MUSICBRAINZ', 'SPOTIFY', 'COMICVINE',
    name='externalidsource',
)


def _file_columns():
    return [
        sa.Column('file_path', sa.String(length=2000), nullable=False),
        sa.Column('file_size', sa.BigInteger(), nullable=True),
        sa.Column('file_modified_at', sa.DateTime(), nullable=True),
    ]


def upgrade() -> None:
    # Create media table
    op.create_table(
        'media',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('type', MEDIA_TYPE, nullable=False),
        sa.Column('title', sa.String(length=500), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('poster_url', sa.String(length=1000), nullable=True),
        sa.Column('backdrop_url', sa.String(length=1000), nullable=True),
        sa.Column('rating', sa.Float(), nullable=True),
        sa.Column('release_date', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_media_type', 'media', ['type'])
    op.create_index('ix_media_title', 'media', ['title'])
    op.create_index('idx_media_type_title', 'media', ['type', 'title'])

    # Subtypes, one row per media
    op.create_table(
        'movies',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('media_id', sa.Integer(), nullable=False),
        *_file_columns(),
        sa.Column('duration', sa.Integer(), nullable=True),
        sa.Column('director', sa.String(length=500), nullable=True),
        sa.Column('trailer_url', sa.String(length=1000), nullable=True),
        sa.ForeignKeyConstraint(['media_id'], ['media.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('media_id'),
        sa.UniqueConstraint('file_path')
    )

    op.create_table(
        'tv_shows',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('media_id', sa.Integer(), nullable=False),
        sa.Column('creator', sa.String(length=500), nullable=True),
        sa.Column('network', sa.String(length=200), nullable=True),
        sa.Column('number_of_seasons', sa.Integer(), nullable=True),
        sa.Column('number_of_episodes', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['media_id'], ['media.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('media_id')
    )

    op.create_table(
        'seasons',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tv_show_id', sa.Integer(), nullable=False),
        sa.Column('number', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=500), nullable=True),
        sa.Column('overview', sa.Text(), nullable=True),
        sa.Column('poster_url', sa.String(length=1000), nullable=True),
        sa.Column('air_date', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['tv_show_id'], ['tv_shows.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tv_show_id', 'number', name='uq_season_show_number')
    )

    op.create_table(
        'episodes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('season_id', sa.Integer(), nullable=False),
        sa.Column('number', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=500), nullable=True),
        sa.Column('overview', sa.Text(), nullable=True),
        sa.Column('air_date', sa.DateTime(), nullable=True),
        sa.Column('duration', sa.Integer(), nullable=True),
        sa.Column('still_url', sa.String(length=1000), nullable=True),
        *_file_columns(),
        sa.ForeignKeyConstraint(['season_id'], ['seasons.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('file_path')
    )

    op.create_table(
        'music',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('media_id', sa.Integer(), nullable=False),
        sa.Column('artist', sa.String(length=500), nullable=False),
        sa.Column('album', sa.String(length=500), nullable=True),
        *_file_columns(),
        sa.ForeignKeyConstraint(['media_id'], ['media.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('media_id'),
        sa.UniqueConstraint('file_path')
    )

    op.create_table(
        'comics',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('media_id', sa.Integer(), nullable=False),
        sa.Column('issue', sa.Integer(), nullable=True),
        sa.Column('volume', sa.String(length=20), nullable=True),
        *_file_columns(),
        sa.ForeignKeyConstraint(['media_id'], ['media.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('media_id'),
        sa.UniqueConstraint('file_path')
    )

    # Genres and external IDs
    op.create_table(
        'genres',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name')
    )

    op.create_table(
        'media_genres',
        sa.Column('media_id', sa.Integer(), nullable=False),
        sa.Column('genre_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['media_id'], ['media.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['genre_id'], ['genres.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('media_id', 'genre_id')
    )

    op.create_table(
        'external_ids',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('source', EXTERNAL_ID_SOURCE, nullable=False),
        sa.Column('external_id', sa.String(length=100), nullable=False),
        sa.Column('media_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['media_id'], ['media.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('source', 'media_id', name='uq_external_id_source_media')
    )
    op.create_index('idx_external_id_lookup', 'external_ids', ['source', 'external_id'])

    # Collections and libraries
    op.create_table(
        'collections',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=500), nullable=False),
        sa.Column('slug', sa.String(length=500), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_library', sa.Boolean(), nullable=True),
        sa.Column('library_path', sa.String(length=2000), nullable=True),
        sa.Column('library_type', MEDIA_TYPE, nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_collections_slug', 'collections', ['slug'], unique=True)

    op.create_table(
        'media_collections',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('media_id', sa.Integer(), nullable=False),
        sa.Column('collection_id', sa.Integer(), nullable=False),
        sa.Column('added_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['media_id'], ['media.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['collection_id'], ['collections.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('media_id', 'collection_id', name='uq_media_collection')
    )

    # Scan jobs
    op.create_table(
        'scan_jobs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('library_id', sa.Integer(), nullable=False),
        sa.Column('scan_path', sa.String(length=2000), nullable=False),
        sa.Column('media_type', MEDIA_TYPE, nullable=False),
        sa.Column('status', SCAN_JOB_STATUS, nullable=False),
        sa.Column('metadata_status', METADATA_STATUS, nullable=False),
        sa.Column('batch_scan', sa.Boolean(), nullable=True),
        sa.Column('update_existing', sa.Boolean(), nullable=True),
        sa.Column('fetch_metadata', sa.Boolean(), nullable=True),
        sa.Column('scanned_count', sa.Integer(), nullable=True),
        sa.Column('metadata_success_count', sa.Integer(), nullable=True),
        sa.Column('metadata_failed_count', sa.Integer(), nullable=True),
        sa.Column('added_count', sa.Integer(), nullable=True),
        sa.Column('updated_count', sa.Integer(), nullable=True),
        sa.Column('skipped_count', sa.Integer(), nullable=True),
        sa.Column('failed_count', sa.Integer(), nullable=True),
        sa.Column('batch_size', sa.Integer(), nullable=True),
        sa.Column('total_folders', sa.Integer(), nullable=True),
        sa.Column('pending_folders', sa.JSON(), nullable=True),
        sa.Column('processed_folders', sa.JSON(), nullable=True),
        sa.Column('failed_folders', sa.JSON(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('metadata_started_at', sa.DateTime(), nullable=True),
        sa.Column('metadata_completed_at', sa.DateTime(), nullable=True),
        sa.Column('last_batch_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['library_id'], ['collections.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_scan_jobs_library_id', 'scan_jobs', ['library_id'])
    op.create_index('ix_scan_jobs_scan_path', 'scan_jobs', ['scan_path'])
    op.create_index('ix_scan_jobs_status', 'scan_jobs', ['status'])
    op.create_index('idx_scan_job_status_started', 'scan_jobs', ['status', 'started_at'])


def downgrade() -> None:
    op.drop_table('scan_jobs')
    op.drop_table('media_collections')
    op.drop_table('collections')
    op.drop_table('external_ids')
    op.drop_table('media_genres')
    op.drop_table('genres')
    op.drop_table('comics')
    op.drop_table('music')
    op.drop_table('episodes')
    op.drop_table('seasons')
    op.drop_table('tv_shows')
    op.drop_table('movies')
    op.drop_table('media')
