"""Application configuration. Loads from environment and .env file."""
import logging
import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
# Load .env from cwd, then backend/.env, then project root .env
load_dotenv()
load_dotenv(BASE_DIR / ".env")
load_dotenv(BASE_DIR.parent / ".env")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# Storage roles (override with env). Directories are created by the storage manager.
UPLOAD_DIR = Path(os.getenv("UPLOAD_DIR", str(BASE_DIR / "uploads")))
OUTPUT_DIR = Path(os.getenv("OUTPUT_DIR", str(BASE_DIR / "converted")))
BATCH_DIR = Path(os.getenv("BATCH_DIR", str(BASE_DIR / "batch")))

# Accepted uploads
ALLOWED_MIME_TYPES = frozenset({
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/gif",
    "image/bmp",
    "image/tiff",
    "image/webp",
})
MAX_FILE_SIZE_MB = int(os.getenv("MAX_FILE_SIZE_MB", "10"))
MAX_FILE_SIZE_BYTES = MAX_FILE_SIZE_MB * 1024 * 1024
MAX_FILES_PER_BATCH = int(os.getenv("MAX_FILES_PER_BATCH", "20"))

# Conversion options
DEFAULT_QUALITY = 80
MIN_QUALITY = 10
MAX_QUALITY = 100
# WebP encoder effort (Pillow "method", 0-6). Not exposed to callers.
WEBP_EFFORT = 4

# Concurrency
MAX_WORKERS = int(os.getenv("MAX_WORKERS", str(min(32, (os.cpu_count() or 4) + 4))))

# Retention (seconds)
STAGING_MAX_AGE_SECONDS = int(os.getenv("STAGING_MAX_AGE_SECONDS", str(30 * 60)))
OUTPUT_MAX_AGE_SECONDS = int(os.getenv("OUTPUT_MAX_AGE_SECONDS", str(60 * 60)))
BATCH_MAX_AGE_SECONDS = int(os.getenv("BATCH_MAX_AGE_SECONDS", str(60 * 60)))
SWEEP_INTERVAL_SECONDS = int(os.getenv("SWEEP_INTERVAL_SECONDS", str(15 * 60)))
FORCED_SWEEP_MAX_AGE_SECONDS = int(os.getenv("FORCED_SWEEP_MAX_AGE_SECONDS", str(5 * 60)))
DOWNLOAD_DELETE_DELAY_SECONDS = int(os.getenv("DOWNLOAD_DELETE_DELAY_SECONDS", "30"))
BATCH_DOWNLOAD_DELETE_DELAY_SECONDS = int(os.getenv("BATCH_DOWNLOAD_DELETE_DELAY_SECONDS", "60"))
BATCH_WORKDIR_DELETE_DELAY_SECONDS = int(os.getenv("BATCH_WORKDIR_DELETE_DELAY_SECONDS", "5"))
# Remove every stored artifact when the app shuts down
PURGE_ON_SHUTDOWN = _env_bool("PURGE_ON_SHUTDOWN", True)

# Server (for uvicorn)
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "5001"))
# CORS: comma-separated origins, e.g. "http://localhost:5173,http://127.0.0.1:5173"
CORS_ORIGINS = [
    o.strip()
    for o in os.getenv(
        "CORS_ORIGINS",
        "http://localhost:5173,http://localhost:3000,http://127.0.0.1:5173",
    ).split(",")
    if o.strip()
]

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("webpify")
