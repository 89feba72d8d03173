"""Project-level configuration, path helpers and messaging limits."""

import os
from pathlib import Path
from typing import Union

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
DATA_DIR = PROJECT_ROOT / "03_data"
LOGS_DIR = PROJECT_ROOT / "04_logs"
DEFAULT_DB_PATH = DATA_DIR / "campus_messaging.db"
DEFAULT_LOG_PATH = LOGS_DIR / "app.log"
DEFAULT_ATTACHMENTS_DIR = DATA_DIR / "attachments"

DATA_DIR.mkdir(parents=True, exist_ok=True)
LOGS_DIR.mkdir(parents=True, exist_ok=True)


PathLike = Union[str, Path]


# Attachments
MAX_FILE_SIZE = 100 * 1024 * 1024  # 100 MB
ALLOWED_FILE_TYPES = frozenset(
    {
        "image/jpeg",
        "image/jpg",
        "image/png",
        "image/gif",
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.ms-powerpoint",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
        "text/plain",
        "text/csv",
    }
)
DANGEROUS_EXTENSIONS = frozenset(
    {".exe", ".bat", ".cmd", ".sh", ".ps1", ".vbs", ".js"}
)
SUSPICIOUS_FILENAME_PATTERNS = ("virus", "malware", "trojan", "ransomware")
ATTACHMENTS_BUCKET = "message-attachments"

# Retry executor
NETWORK_TIMEOUT = 30.0  # seconds per attempt
MAX_RETRIES = 3
BACKOFF_BASE = 1.0
BACKOFF_CAP = 10.0

# Real-time connections
HEARTBEAT_INTERVAL = 15.0
STALE_CONNECTION_TIMEOUT = 30.0
CLEANUP_INTERVAL = 30.0
CONNECTION_RECORD_TTL = 300  # seconds
SSE_CLIENT_RETRY_MS = 3000
RECONNECT_BASE_DELAY = 1.0
RECONNECT_MAX_DELAY = 30.0

# Conversation list preview length (mirrors the messages trigger)
PREVIEW_LENGTH = 100


def resolve_db_path(env_value: PathLike | None = None) -> PathLike:
    """Resolve DATABASE_URL to an absolute path."""
    if not env_value:
        return DEFAULT_DB_PATH

    if str(env_value) == ":memory:":
        return ":memory:"

    candidate = Path(env_value)
    return candidate if candidate.is_absolute() else PROJECT_ROOT / candidate


def resolve_attachments_dir(env_value: PathLike | None = None) -> Path:
    """Resolve ATTACHMENTS_DIR to an absolute path."""
    if not env_value:
        return DEFAULT_ATTACHMENTS_DIR

    candidate = Path(env_value)
    return candidate if candidate.is_absolute() else PROJECT_ROOT / candidate


def cors_origins() -> list[str]:
    """Allowed CORS origins from CORS_ORIGINS (comma separated)."""
    raw = os.getenv("CORS_ORIGINS", "http://localhost:3000")
    return [origin.strip() for origin in raw.split(",") if origin.strip()]
