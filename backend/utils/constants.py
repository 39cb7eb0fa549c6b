"""
Centralized constants for Dester.

This module contains the magic numbers and lookup tables that are used
across the scan pipeline. Having them in one place:
- Makes it easy to adjust values
- Documents what each value is for
- Prevents duplication and inconsistency

Usage:
    from backend.utils.constants import TIMEOUTS, SCAN
"""


# ============================================================================
# Timeout Configuration (in seconds)
# ============================================================================

class TIMEOUTS:
    """
    HTTP and filesystem timeout values.

    All timeouts are in seconds unless otherwise noted.
    """

    # HTTP client timeouts for metadata providers
    HTTP_DEFAULT = 10.0          # Default timeout for most HTTP requests
    HTTP_EXTENDED = 30.0         # Detail requests with appended responses

    # Retry backoff for provider calls
    RETRY_INITIAL_DELAY = 1.0
    RETRY_MAX_DELAY = 10.0

    # Slow mount operations
    FOLDER_DISCOVERY = 600       # Listing a library root over FTP/SMB can be very slow
    FOLDER_WALK = 300            # Walking a single show/movie folder


# ============================================================================
# API Configuration
# ============================================================================

class API:
    """
    API-related constants.
    """

    # Sensitive field masking
    MASK_VALUE = "***"


# ============================================================================
# Scan Configuration
# ============================================================================

class SCAN:
    """
    Media scanning constants.
    """

    # Extension table per media type (lowercase, with leading dot)
    VIDEO_EXTENSIONS = (
        ".mp4", ".mkv", ".avi", ".mov", ".wmv", ".flv", ".webm",
        ".m4v", ".mpg", ".mpeg", ".m2ts", ".ts",
    )
    AUDIO_EXTENSIONS = (".mp3", ".flac", ".wav", ".aac", ".ogg", ".m4a", ".wma", ".opus")
    COMIC_EXTENSIONS = (".cbr", ".cbz", ".cb7", ".cbt", ".pdf", ".epub")

    # Default batch sizes (top-level folders per batch)
    TV_BATCH_SIZE = 5
    MOVIE_BATCH_SIZE = 25

    # Directories never worth descending into
    SKIP_DIRECTORIES = frozenset({
        "$RECYCLE.BIN",
        "System Volume Information",
        "node_modules",
        "__pycache__",
        "@eaDir",
        "#recycle",
        "lost+found",
        "Extras",
        "Behind The Scenes",
        "Deleted Scenes",
        "Featurettes",
        "Interviews",
        "Trailers",
    })

    # Progress is broadcast every N files during the saving phase
    PROGRESS_EVERY = 10


# ============================================================================
# WebSocket Configuration
# ============================================================================

class WEBSOCKET:
    """
    WebSocket channel and event names.
    """

    SCAN_CHANNEL = "scan"

    SCAN_STARTED = "scan:started"
    SCAN_QUEUED = "scan:queued"
    SCAN_PROGRESS = "scan:progress"
    SCAN_COMPLETE = "scan:complete"
    SCAN_ERROR = "scan:error"
    SCAN_CANCELLED = "scan:cancelled"
