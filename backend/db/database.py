"""
Dester Database Management
Handles database initialization and sessions
"""

import asyncio
from pathlib import Path
from typing import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy import event

from backend.db.models import Base
from backend.utils.config import get_settings

import structlog

logger = structlog.get_logger(__name__)

# Database engine and session factory (initialized lazily)
_engine = None
_async_session_factory = None
_lock = asyncio.Lock()


def get_db_path() -> Path:
    """Get the path to the SQLite database file."""
    settings = get_settings()
    return settings.data_dir / "dester.db"


def get_database_url() -> str:
    """Get the database URL."""
    return f"sqlite+aiosqlite:///{get_db_path()}"


def build_engine(url: str):
    """Create an async engine with the SQLite pragmas the pipeline relies on."""
    engine = create_async_engine(
        url,
        echo=False,
        pool_pre_ping=True,
        connect_args={"check_same_thread": False},
    )

    # WAL for concurrent readers while a scan writes; FKs for cascade deletes
    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()

    return engine


def build_session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def get_engine():
    """Get or create the database engine."""
    global _engine

    async with _lock:
        if _engine is None:
            _engine = build_engine(get_database_url())
            logger.info("Database engine created", url=get_database_url())

    return _engine


async def get_session_factory():
    """Get or create the async session factory."""
    global _async_session_factory

    if _async_session_factory is not None:
        return _async_session_factory

    engine = await get_engine()
    async with _lock:
        if _async_session_factory is None:
            _async_session_factory = build_session_factory(engine)
            logger.info("Session factory created")

    return _async_session_factory


def configure(engine, session_factory=None) -> None:
    """Install an externally built engine (used by tests and tooling)."""
    global _engine, _async_session_factory
    _engine = engine
    _async_session_factory = session_factory or build_session_factory(engine)


async def init_db() -> None:
    """Initialize the database, creating tables if they don't exist."""
    if _engine is None:
        get_db_path().parent.mkdir(parents=True, exist_ok=True)

    engine = await get_engine()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database initialized")


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for getting database sessions.

    IMPORTANT: This does NOT auto-commit. Routes must explicitly call:
    - await db.commit() to save changes
    - await db.rollback() to discard changes
    """
    session_factory = await get_session_factory()
    async with session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Context manager for database sessions (for use outside of FastAPI routes).
    """
    session_factory = await get_session_factory()
    async with session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def close_db() -> None:
    """Close the database engine."""
    global _engine, _async_session_factory

    async with _lock:
        if _engine:
            await _engine.dispose()
            _engine = None
            _async_session_factory = None
            logger.info("Database connection closed")
