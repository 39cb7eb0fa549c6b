"""Dester - media library scan and metadata ingestion service."""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import structlog

from backend.db.database import close_db, init_db
from backend.utils.config import get_config
from backend.utils.logging import setup_logging
from backend.core.metadata.service import MetadataService
from backend.core.scanner.pipeline import ScanPipeline
from backend.core.scanner.progress import ProgressEmitter
from backend.core.scanner.scheduler import ScanScheduler
from backend.core.websocket_manager import WebSocketManager
from backend.utils.version import VERSION

from backend.api.routes import (
    scan,
    settings,
    health,
    websocket_routes,
)

# Setup logging first
setup_logging()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting Dester", version=VERSION)

    await init_db()
    logger.info("Database initialized")

    app.state.ws_manager = WebSocketManager()
    app.state.metadata_service = MetadataService.default()
    pipeline = ScanPipeline(app.state.metadata_service, ProgressEmitter(app.state.ws_manager))
    app.state.scan_scheduler = ScanScheduler(pipeline)

    config = get_config()
    logger.info(
        "Configuration loaded",
        tmdb_configured=config.metadata.tmdb.is_configured,
        anilist_enabled=config.metadata.anilist.enabled,
        path_mappings=len(config.path_mappings),
    )

    # Jobs left RUNNING by a previous process
    cleaned = await app.state.scan_scheduler.cleanup_stale_jobs()
    if cleaned.total:
        logger.info("Startup cleanup", stale_marked_failed=cleaned.stale_failed, removed=cleaned.removed)

    yield

    logger.info("Shutting down Dester")
    await app.state.scan_scheduler.shutdown()
    await app.state.metadata_service.close()
    await close_db()


app = FastAPI(
    title="Dester",
    description="Media library scan and metadata ingestion",
    version=VERSION,
    lifespan=lifespan,
)

# Comma-separated origins, or "*" / unset for any origin
CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "").split(",") if os.environ.get("CORS_ORIGINS") else []
allow_all_origins = os.environ.get("CORS_ORIGINS") == "*" or not CORS_ORIGINS

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if allow_all_origins else CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(scan.router, prefix="/api/scan")
app.include_router(settings.router, prefix="/api/settings")
app.include_router(health.router, prefix="/api")
app.include_router(websocket_routes.router, prefix="/ws")


@app.get("/")
async def root():
    return {
        "message": "Dester API",
        "version": VERSION,
        "docs": "/docs",
    }
