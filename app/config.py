"""Silence Strip - Configuration constants.

Environment-sourced configuration. A .env file in the working directory
(or a parent) is loaded first; variables already set in the process
environment take precedence. All paths are relative to the repository
root by default.
"""

import os
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

load_dotenv(find_dotenv(usecwd=True))

# Repository root (parent of app/)
REPO_ROOT = Path(__file__).parent.parent.resolve()


def _get_int(name: str, default: int) -> int:
    """Get a positive integer from the environment or use default.

    Args:
        name: Environment variable name.
        default: Value used when unset, empty, non-numeric or not positive.

    Returns:
        The parsed integer.
    """
    env_val = os.environ.get(name)
    if env_val:
        try:
            value = int(env_val)
            if value > 0:
                return value
        except ValueError:
            pass
    return default


def _get_str(name: str, default: str) -> str:
    env_val = os.environ.get(name, "").strip()
    return env_val or default


# --- Server ---

PORT = _get_int("PORT", 3000)
HOST = _get_str("HOST", "0.0.0.0")
LOG_LEVEL = _get_str("LOG_LEVEL", "INFO").upper()

# --- Scratch storage ---

# Per-request working files live here and never outlive their request
SCRATCH_DIR = Path(_get_str("AUDIO_SCRATCH_DIR", str(REPO_ROOT / "temp")))

# Fixed suffix per role (input/output)
INPUT_PREFIX = "input_"
OUTPUT_PREFIX = "output_"
INPUT_SUFFIX = ".oga"
OUTPUT_SUFFIX = ".mp3"

# --- Upload limits ---

# 50 MiB, enforced at the transport layer and again while ingesting
MAX_UPLOAD_BYTES = 50 * 1024 * 1024
UPLOAD_CHUNK_SIZE = 65536

# Accepted without an audio MIME type
SOURCE_EXTENSION = ".oga"

# --- External engine ---

FFMPEG_BINARY = _get_str("FFMPEG_BINARY", "ffmpeg")
FFPROBE_BINARY = _get_str("FFPROBE_BINARY", "ffprobe")

# Upper bound for one ffmpeg invocation
FFMPEG_TIMEOUT_SECONDS = _get_int("FFMPEG_TIMEOUT_SEC", 300)
FFPROBE_TIMEOUT_SECONDS = 30

# Lines of ffmpeg stderr kept in failure diagnostics
ENGINE_DIAGNOSTIC_LINES = 20

# --- Transcode defaults ---

DEFAULT_BITRATE = "128k"
DEFAULT_MIN_SILENCE_SEC = 0.5
DEFAULT_SILENCE_THRESHOLD = "-50dB"

OUTPUT_CODEC = "libmp3lame"
OUTPUT_FORMAT = "mp3"
OUTPUT_MEDIA_TYPE = "audio/mpeg"
OUTPUT_FILENAME = "processed_audio.mp3"
