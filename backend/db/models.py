"""
Dester Database Models
SQLAlchemy models for the media library and scan tracking
"""

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    BigInteger, Boolean, Column, DateTime, Enum as SQLEnum, Float, ForeignKey,
    Index, Integer, JSON, String, Table, Text, UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, relationship
from sqlalchemy.sql import func


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what SQLite hands back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class MediaType(str, Enum):
    """Types of media a library can hold."""
    MOVIE = "MOVIE"
    TV_SHOW = "TV_SHOW"
    MUSIC = "MUSIC"
    COMIC = "COMIC"


class ScanJobStatus(str, Enum):
    """Lifecycle of a scan job."""
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class MetadataStatus(str, Enum):
    """Lifecycle of the metadata enrichment phase of a scan job."""
    NOT_STARTED = "NOT_STARTED"
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class ExternalIdSource(str, Enum):
    """Metadata providers an external ID can belong to."""
    TMDB = "TMDB"
    IMDB = "IMDB"
    TVDB = "TVDB"
    ANIDB = "ANIDB"
    ANILIST = "ANILIST"
    MYANIMELIST = "MYANIMELIST"
    MUSICBRAINZ = "MUSICBRAINZ"
    SPOTIFY = "SPOTIFY"
    COMICVINE = "COMICVINE"


# =============================================================================
# Media Models
# =============================================================================

media_genres = Table(
    "media_genres",
    Base.metadata,
    Column("media_id", Integer, ForeignKey("media.id", ondelete="CASCADE"), primary_key=True),
    Column("genre_id", Integer, ForeignKey("genres.id", ondelete="CASCADE"), primary_key=True),
)


class Media(Base):
    """Type-erased parent row; exactly one subtype row hangs off it."""
    __tablename__ = "media"

    id = Column(Integer, primary_key=True)
    type = Column(SQLEnum(MediaType), nullable=False, index=True)

    # Basic info
    title = Column(String(500), nullable=False, index=True)
    description = Column(Text)
    poster_url = Column(String(1000))
    backdrop_url = Column(String(1000))
    rating = Column(Float)
    release_date = Column(DateTime)

    # Timestamps
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # Relationships
    movie = relationship("Movie", back_populates="media", uselist=False, cascade="all, delete-orphan")
    tv_show = relationship("TVShow", back_populates="media", uselist=False, cascade="all, delete-orphan")
    music = relationship("Music", back_populates="media", uselist=False, cascade="all, delete-orphan")
    comic = relationship("Comic", back_populates="media", uselist=False, cascade="all, delete-orphan")
    external_ids = relationship("ExternalId", back_populates="media", cascade="all, delete-orphan")
    genres = relationship("Genre", secondary=media_genres, back_populates="media")
    collections = relationship("MediaCollection", back_populates="media", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_media_type_title", "type", "title"),
    )


class Movie(Base):
    """Movie subtype."""
    __tablename__ = "movies"

    id = Column(Integer, primary_key=True)
    media_id = Column(Integer, ForeignKey("media.id", ondelete="CASCADE"), nullable=False, unique=True)

    # File info
    file_path = Column(String(2000), nullable=False, unique=True)
    file_size = Column(BigInteger)
    file_modified_at = Column(DateTime)

    # Movie specific
    duration = Column(Integer)  # Runtime in minutes
    director = Column(String(500))
    trailer_url = Column(String(1000))

    media = relationship("Media", back_populates="movie")


class TVShow(Base):
    """TV show subtype; owns seasons."""
    __tablename__ = "tv_shows"

    id = Column(Integer, primary_key=True)
    media_id = Column(Integer, ForeignKey("media.id", ondelete="CASCADE"), nullable=False, unique=True)

    creator = Column(String(500))
    network = Column(String(200))
    number_of_seasons = Column(Integer)
    number_of_episodes = Column(Integer)

    media = relationship("Media", back_populates="tv_show")
    seasons = relationship("Season", back_populates="tv_show", cascade="all, delete-orphan")


class Season(Base):
    """TV season."""
    __tablename__ = "seasons"

    id = Column(Integer, primary_key=True)
    tv_show_id = Column(Integer, ForeignKey("tv_shows.id", ondelete="CASCADE"), nullable=False)

    number = Column(Integer, nullable=False)
    title = Column(String(500))
    overview = Column(Text)
    poster_url = Column(String(1000))
    air_date = Column(DateTime)

    tv_show = relationship("TVShow", back_populates="seasons")
    episodes = relationship("Episode", back_populates="season", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("tv_show_id", "number", name="uq_season_show_number"),
    )


class Episode(Base):
    """TV episode; keyed by its own file path."""
    __tablename__ = "episodes"

    id = Column(Integer, primary_key=True)
    season_id = Column(Integer, ForeignKey("seasons.id", ondelete="CASCADE"), nullable=False)

    number = Column(Integer, nullable=False)
    title = Column(String(500))
    overview = Column(Text)
    air_date = Column(DateTime)
    duration = Column(Integer)
    still_url = Column(String(1000))

    # File info
    file_path = Column(String(2000), nullable=False, unique=True)
    file_size = Column(BigInteger)
    file_modified_at = Column(DateTime)

    season = relationship("Season", back_populates="episodes")


class Music(Base):
    """Music track subtype."""
    __tablename__ = "music"

    id = Column(Integer, primary_key=True)
    media_id = Column(Integer, ForeignKey("media.id", ondelete="CASCADE"), nullable=False, unique=True)

    artist = Column(String(500), nullable=False)
    album = Column(String(500))

    file_path = Column(String(2000), nullable=False, unique=True)
    file_size = Column(BigInteger)
    file_modified_at = Column(DateTime)

    media = relationship("Media", back_populates="music")


class Comic(Base):
    """Comic issue subtype."""
    __tablename__ = "comics"

    id = Column(Integer, primary_key=True)
    media_id = Column(Integer, ForeignKey("media.id", ondelete="CASCADE"), nullable=False, unique=True)

    issue = Column(Integer)
    volume = Column(String(20))

    file_path = Column(String(2000), nullable=False, unique=True)
    file_size = Column(BigInteger)
    file_modified_at = Column(DateTime)

    media = relationship("Media", back_populates="comic")


class Genre(Base):
    """Genre names shared across media."""
    __tablename__ = "genres"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False, unique=True)

    media = relationship("Media", secondary=media_genres, back_populates="genres")


class ExternalId(Base):
    """Provider identifier attached to a media row."""
    __tablename__ = "external_ids"

    id = Column(Integer, primary_key=True)
    source = Column(SQLEnum(ExternalIdSource), nullable=False)
    external_id = Column(String(100), nullable=False)
    media_id = Column(Integer, ForeignKey("media.id", ondelete="CASCADE"), nullable=False)

    media = relationship("Media", back_populates="external_ids")

    __table_args__ = (
        UniqueConstraint("source", "media_id", name="uq_external_id_source_media"),
        Index("idx_external_id_lookup", "source", "external_id"),
    )


# =============================================================================
# Collection Models
# =============================================================================

class Collection(Base):
    """Named grouping of media; a library when it owns a filesystem root."""
    __tablename__ = "collections"

    id = Column(Integer, primary_key=True)
    name = Column(String(500), nullable=False)
    slug = Column(String(500), nullable=False, unique=True, index=True)
    description = Column(Text)

    # Library fields
    is_library = Column(Boolean, default=False)
    library_path = Column(String(2000))
    library_type = Column(SQLEnum(MediaType))

    # Timestamps
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    members = relationship("MediaCollection", back_populates="collection", cascade="all, delete-orphan")
    scan_jobs = relationship("ScanJob", back_populates="library", cascade="all, delete-orphan")


class MediaCollection(Base):
    """Many-to-many join between media and collections."""
    __tablename__ = "media_collections"

    id = Column(Integer, primary_key=True)
    media_id = Column(Integer, ForeignKey("media.id", ondelete="CASCADE"), nullable=False)
    collection_id = Column(Integer, ForeignKey("collections.id", ondelete="CASCADE"), nullable=False)
    added_at = Column(DateTime, default=func.now())

    media = relationship("Media", back_populates="collections")
    collection = relationship("Collection", back_populates="members")

    __table_args__ = (
        UniqueConstraint("media_id", "collection_id", name="uq_media_collection"),
    )


# =============================================================================
# Scan Models
# =============================================================================

class ScanJob(Base):
    """Durable record of one scan's lifecycle and progress counters."""
    __tablename__ = "scan_jobs"

    id = Column(Integer, primary_key=True)
    library_id = Column(Integer, ForeignKey("collections.id", ondelete="CASCADE"), nullable=False, index=True)
    scan_path = Column(String(2000), nullable=False, index=True)
    media_type = Column(SQLEnum(MediaType), nullable=False)

    # Status
    status = Column(SQLEnum(ScanJobStatus), default=ScanJobStatus.PENDING, nullable=False, index=True)
    metadata_status = Column(SQLEnum(MetadataStatus), default=MetadataStatus.NOT_STARTED, nullable=False)

    # Options the job was accepted with
    batch_scan = Column(Boolean, default=False)
    update_existing = Column(Boolean, default=False)
    fetch_metadata = Column(Boolean, default=True)

    # Counters
    scanned_count = Column(Integer, default=0)
    metadata_success_count = Column(Integer, default=0)
    metadata_failed_count = Column(Integer, default=0)
    added_count = Column(Integer, default=0)
    updated_count = Column(Integer, default=0)
    skipped_count = Column(Integer, default=0)
    failed_count = Column(Integer, default=0)

    # Batch tracking
    batch_size = Column(Integer)
    total_folders = Column(Integer, default=0)
    pending_folders = Column(JSON, default=list)
    processed_folders = Column(JSON, default=list)
    failed_folders = Column(JSON, default=list)

    error_message = Column(Text)

    # Timing
    started_at = Column(DateTime)
    completed_at = Column(DateTime)
    metadata_started_at = Column(DateTime)
    metadata_completed_at = Column(DateTime)
    last_batch_at = Column(DateTime)

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    library = relationship("Collection", back_populates="scan_jobs")

    __table_args__ = (
        Index("idx_scan_job_status_started", "status", "started_at"),
    )

    @property
    def progress_percent(self) -> float:
        if self.total_folders:
            done = len(self.processed_folders or []) + len(self.failed_folders or [])
            return round(done / self.total_folders * 100, 1)
        if self.status == ScanJobStatus.COMPLETED:
            return 100.0
        return 0.0
