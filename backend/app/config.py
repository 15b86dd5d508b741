"""Application configuration. Loads from environment and .env file."""
import logging
import os
import tempfile
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


# Engine binaries
FFMPEG_PATH = os.getenv("FFMPEG_PATH", "ffmpeg")
FFPROBE_PATH = os.getenv("FFPROBE_PATH", "ffprobe")

# Scratch files live under the OS temp dir unless overridden
SCRATCH_DIR = Path(os.getenv("SCRATCH_DIR", tempfile.gettempdir()))
SCRATCH_DIR.mkdir(parents=True, exist_ok=True)

# Transcode defaults
DEFAULT_FORMAT = os.getenv("DEFAULT_FORMAT", "mp4").lower()
VIDEO_CODEC = os.getenv("VIDEO_CODEC", "libx264")
AUDIO_CODEC = os.getenv("AUDIO_CODEC", "aac")
ENCODE_PRESET = os.getenv("ENCODE_PRESET", "veryfast")

# Container name -> engine muxer. All of these accept h264 + aac.
VIDEO_OUTPUT_FORMATS = {
    "mp4": "mp4",
    "mov": "mov",
    "mkv": "matroska",
    "ts": "mpegts",
    "flv": "flv",
}
# Containers that get fragmented, streaming-friendly output
STREAMABLE_FORMATS = {"mp4", "mov"}

# Timeouts in seconds (0 disables the transcode timeout)
TRANSCODE_TIMEOUT = float(os.getenv("TRANSCODE_TIMEOUT", "600"))
PROBE_TIMEOUT = float(os.getenv("PROBE_TIMEOUT", "60"))

# Concurrency
MAX_WORKERS = int(os.getenv("MAX_WORKERS", str(min(32, (os.cpu_count() or 4) + 4))))

# Limits
MAX_VIDEO_SIZE_MB = int(os.getenv("MAX_VIDEO_SIZE_MB", "150"))
MAX_VIDEO_SIZE_BYTES = MAX_VIDEO_SIZE_MB * 1024 * 1024
STREAM_CHUNK_SIZE = int(os.getenv("STREAM_CHUNK_SIZE", str(1024 * 1024)))

# Scratch removal retries
REMOVE_ATTEMPTS = int(os.getenv("REMOVE_ATTEMPTS", "5"))
REMOVE_BACKOFF_SECONDS = float(os.getenv("REMOVE_BACKOFF_SECONDS", "0.2"))

# Include a one-line engine diagnostic in error responses
EXPOSE_ERROR_DETAILS = _env_bool("EXPOSE_ERROR_DETAILS", True)

# Server (for uvicorn)
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))
# CORS: comma-separated origins, e.g. "http://localhost:5173,http://127.0.0.1:5173"
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",") if o.strip()]

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("compressor")
