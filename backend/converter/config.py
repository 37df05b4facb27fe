"""Application configuration. Loads from environment and .env file."""
import logging
import os
import sys
import tempfile
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
# Load .env from cwd, then backend/.env, then project root .env
load_dotenv()
load_dotenv(BASE_DIR / ".env")
load_dotenv(BASE_DIR.parent / ".env")

# Paths (override with env)
UPLOAD_DIR = Path(os.getenv("UPLOAD_DIR", str(BASE_DIR / "uploads")))
OUTPUT_DIR = Path(os.getenv("OUTPUT_DIR", str(BASE_DIR / "outputs")))
UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
OUTPUT_DIR.mkdir(parents=True, exist_ok=True)

# Input kinds, checked in this order. Sets are disjoint.
IMAGE_EXTENSIONS = frozenset({
    "png", "jpg", "jpeg", "webp", "gif", "bmp", "tif", "tiff",
    "ico", "avif", "heic", "heif", "svg", "eps", "ai",
})
VIDEO_EXTENSIONS = frozenset({
    "mp4", "mov", "webm", "mkv", "avi", "m4v", "flv", "wmv",
    "mpg", "mpeg", "3gp", "ts",
})
AUDIO_EXTENSIONS = frozenset({
    "mp3", "wav", "m4a", "aac", "ogg", "oga", "opus", "flac", "wma", "aiff",
})
DOCUMENT_EXTENSIONS = frozenset({
    "txt", "md", "csv", "pdf", "doc", "docx", "odt", "rtf",
})

# Fast path: what Pillow decodes reliably, and what it encodes for us
FAST_DECODABLE_EXTENSIONS = frozenset({
    "png", "jpg", "jpeg", "webp", "gif", "bmp", "tif", "tiff", "ico",
})
FAST_ENCODABLE_FORMATS = frozenset({"png", "jpg", "webp"})

# Inputs that need a PostScript rasterizer, and outputs that are vector
RASTERIZER_REQUIRED_EXTENSIONS = frozenset({"eps", "ai"})
VECTOR_OUTPUT_FORMATS = frozenset({"svg", "eps", "pdf"})
ICON_SIZE = 256

# Conversion options (env overrides)
DEFAULT_QUALITY = int(os.getenv("DEFAULT_QUALITY", "92"))
MIN_QUALITY = 0.5
MAX_INPUT_BYTES = int(os.getenv("MAX_INPUT_BYTES", str(1024 * 1024 * 1024)))
LOG_TAIL_LINES = int(os.getenv("LOG_TAIL_LINES", "30"))

# Transcoding engine assets. Local copies are preferred; missing ones are
# fetched from a pinned static build and cached under ENGINE_CACHE_DIR.
ENGINE_DIR = Path(os.getenv("ENGINE_DIR", str(BASE_DIR / "engine")))
ENGINE_CACHE_DIR = Path(
    os.getenv("ENGINE_CACHE_DIR", str(Path(tempfile.gettempdir()) / "converter-engine"))
)
ENGINE_REMOTE_BASE = os.getenv(
    "ENGINE_REMOTE_BASE",
    "https://github.com/eugeneware/ffmpeg-static/releases/download/b6.1.1",
)
ENGINE_PLATFORM = os.getenv(
    "ENGINE_PLATFORM", "win32-x64" if sys.platform == "win32" else "linux-x64"
)
ENGINE_ASSETS = ("ffmpeg", "ffprobe")
ENGINE_FETCH_TIMEOUT = int(os.getenv("ENGINE_FETCH_TIMEOUT", "120"))

# Progress: points of each item's slice reserved for preparing, and the span
# the engine's own 0..1 progress is mapped into.
PREPARE_PROGRESS = 5
ENGINE_PROGRESS_RANGE = (10, 95)

# Server (for uvicorn)
HOST = os.getenv("HOST", "127.0.0.1")
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
logger = logging.getLogger("converter")
