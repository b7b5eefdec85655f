"""Silence Strip - Audio metadata probing.

Structural metadata via ffprobe (duration, container, codec, streams).
probe_audio() raises on failure; extract_audio_metadata() is the best-effort
variant used where missing metadata must never block processing.

Dependencies:
- Requires ffprobe installed and in PATH (or FFPROBE_BINARY)
"""

from __future__ import annotations

import json
import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from app import config

logger = logging.getLogger(__name__)


class ProbeError(Exception):
    """ffprobe could not read the file."""


@dataclass
class AudioProbe:
    """Structural metadata of a media file as reported by ffprobe."""

    duration_sec: float | None = None
    format_name: str | None = None
    codec_name: str | None = None
    sample_rate: int | None = None
    channels: int | None = None
    bit_rate: int | None = None
    stream_count: int = 0
    streams: list[dict] = field(default_factory=list)


@dataclass
class RawAudioMetadata:
    """Best-effort metadata. All fields may be None if probing fails."""

    duration_sec: float | None = None
    sample_rate: int | None = None
    channels: int | None = None
    format_guess: str | None = None


def _to_float(value) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_int(value) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def probe_audio(path: str | Path) -> AudioProbe:
    """Probe a media file with ffprobe.

    Args:
        path: Path to the media file.

    Returns:
        AudioProbe for the first audio stream (container fields otherwise).

    Raises:
        ProbeError: If the file is missing, ffprobe is unavailable, times out,
            or reports an error.
    """
    path = Path(path)
    if not path.exists():
        raise ProbeError(f"File does not exist: {path.name}")

    cmd = [
        config.FFPROBE_BINARY,
        "-v",
        "error",
        "-print_format",
        "json",
        "-show_format",
        "-show_streams",
        str(path),
    ]

    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            check=False,
            timeout=config.FFPROBE_TIMEOUT_SECONDS,
        )
    except subprocess.TimeoutExpired as e:
        raise ProbeError(f"ffprobe timed out after {config.FFPROBE_TIMEOUT_SECONDS}s") from e
    except FileNotFoundError as e:
        raise ProbeError("ffprobe not found in PATH") from e
    except OSError as e:
        raise ProbeError(f"ffprobe execution failed: {e}") from e

    if result.returncode != 0:
        stderr = result.stderr.decode("utf-8", errors="replace").strip()
        raise ProbeError(f"ffprobe failed: {stderr or f'exit code {result.returncode}'}")

    try:
        payload = json.loads(result.stdout or b"{}")
    except json.JSONDecodeError as e:
        raise ProbeError(f"ffprobe returned invalid JSON: {e}") from e

    fmt = payload.get("format") or {}
    streams = payload.get("streams") or []
    audio = next((s for s in streams if s.get("codec_type") == "audio"), {})

    duration = _to_float(fmt.get("duration"))
    if duration is None:
        duration = _to_float(audio.get("duration"))

    return AudioProbe(
        duration_sec=duration,
        format_name=fmt.get("format_name"),
        codec_name=audio.get("codec_name"),
        sample_rate=_to_int(audio.get("sample_rate")),
        channels=_to_int(audio.get("channels")),
        bit_rate=_to_int(fmt.get("bit_rate")),
        stream_count=len(streams),
        streams=streams,
    )


def extract_audio_metadata(path: str | Path) -> RawAudioMetadata:
    """Extract metadata from an audio file (best-effort).

    This function NEVER raises exceptions. Failures are logged at debug
    level and return the extension-based format guess only.

    Args:
        path: Path to the audio file.

    Returns:
        RawAudioMetadata with available fields filled in.
    """
    format_guess = guess_format_from_extension(str(path))
    try:
        probe = probe_audio(path)
    except ProbeError as e:
        logger.debug("Metadata probe failed for %s: %s", Path(path).name, e)
        return RawAudioMetadata(format_guess=format_guess)

    return RawAudioMetadata(
        duration_sec=probe.duration_sec,
        sample_rate=probe.sample_rate,
        channels=probe.channels,
        format_guess=format_guess,
    )


def guess_format_from_extension(filename: str) -> str | None:
    """Guess audio format from filename extension.

    Args:
        filename: Filename or path string.

    Returns:
        Lowercase extension without dot, or None if no extension.
    """
    path = Path(filename)
    ext = path.suffix.lower().lstrip(".")
    return ext if ext else None


__all__ = [
    "AudioProbe",
    "ProbeError",
    "RawAudioMetadata",
    "probe_audio",
    "extract_audio_metadata",
    "guess_format_from_extension",
]
