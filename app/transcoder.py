"""Silence Strip - Transcode invoker.

Wraps ffmpeg behind a narrow contract:

    transcode(input_path, output_path, options) -> TranscodeResult

One invocation removes leading silence once and all interior/trailing
silence (both ends share the same duration and threshold), then encodes
MP3 at the requested bitrate, overwriting any file at output_path.

ffmpeg runs as an asyncio subprocess, so awaiting it suspends only the
calling request. Progress lines (-progress pipe:1) are logged and never
affect the result. The invoker does not retry.

Dependencies:
- Requires ffmpeg installed and in PATH (or FFMPEG_BINARY)

Error codes:
- ENGINE_ERROR: ffmpeg failed, is missing, or exceeded the timeout
- MISSING_INPUT: input file does not exist (ffmpeg is not started)
"""

from __future__ import annotations

import asyncio
import logging
import shlex
import time
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from app import config
from app.schemas import TranscodeOptions
from app.utils.audio_meta import extract_audio_metadata

logger = logging.getLogger(__name__)


# --- Error Codes ---


class TranscodeErrorCode(StrEnum):
    """Failure kinds reported by the invoker."""

    ENGINE_ERROR = "ENGINE_ERROR"
    MISSING_INPUT = "MISSING_INPUT"


# --- Result Types ---


@dataclass
class TranscodeMetrics:
    """Metrics collected during one invocation."""

    input_duration_sec: float | None = None
    elapsed_ms: int = 0


@dataclass
class TranscodeResult:
    """Result of a transcode invocation."""

    ok: bool
    output_path: Path | None = None
    error_code: str | None = None
    message: str | None = None
    metrics: TranscodeMetrics = field(default_factory=TranscodeMetrics)

    @classmethod
    def success(cls, output_path: Path, metrics: TranscodeMetrics) -> TranscodeResult:
        return cls(ok=True, output_path=output_path, metrics=metrics)

    @classmethod
    def failure(
        cls,
        error_code: str,
        message: str,
        metrics: TranscodeMetrics | None = None,
    ) -> TranscodeResult:
        return cls(
            ok=False,
            error_code=error_code,
            message=message,
            metrics=metrics or TranscodeMetrics(),
        )


# --- Command Construction ---


def build_silence_filter(options: TranscodeOptions) -> str:
    """Build the silenceremove filter expression.

    start_periods=1 trims leading silence once; stop_periods=-1 removes
    every later silent stretch, not just the trailing one.
    """
    duration = f"{options.min_silence_duration:.6f}".rstrip("0").rstrip(".")
    threshold = options.silence_threshold
    params = [
        "start_periods=1",
        f"start_duration={duration}",
        f"start_threshold={threshold}",
        "stop_periods=-1",
        f"stop_duration={duration}",
        f"stop_threshold={threshold}",
    ]
    return "silenceremove=" + ":".join(params)


def build_ffmpeg_command(
    input_path: str | Path,
    output_path: str | Path,
    options: TranscodeOptions,
) -> list[str]:
    """Build the ffmpeg argument vector for one invocation.

    Args:
        input_path: Source audio file.
        output_path: Destination MP3 (overwritten if present).
        options: Bitrate and silence parameters.

    Returns:
        Argument list suitable for create_subprocess_exec.
    """
    return [
        config.FFMPEG_BINARY,
        "-hide_banner",
        "-nostdin",
        "-y",
        "-i",
        str(input_path),
        "-af",
        build_silence_filter(options),
        "-c:a",
        config.OUTPUT_CODEC,
        "-b:a",
        options.bitrate,
        "-f",
        config.OUTPUT_FORMAT,
        "-progress",
        "pipe:1",
        "-nostats",
        str(output_path),
    ]


# --- Engine Output Handling ---


def _format_diagnostic(stderr: bytes, *paths: Path) -> str:
    """Keep the tail of ffmpeg stderr, with scratch paths reduced to names."""
    text = stderr.decode("utf-8", errors="replace")
    for path in paths:
        text = text.replace(str(path), path.name)

    lines = [line.strip() for line in text.splitlines() if line.strip()]
    if not lines:
        return "no diagnostic output"
    return "\n".join(lines[-config.ENGINE_DIAGNOSTIC_LINES :])


async def _watch_progress(stream: asyncio.StreamReader, duration_sec: float | None) -> None:
    """Log progress percentages from ffmpeg's key=value progress stream."""
    last_percent = -1
    async for raw in stream:
        key, _, value = raw.decode("utf-8", errors="replace").strip().partition("=")

        if key in ("out_time_us", "out_time_ms") and duration_sec:
            # Both keys carry microseconds; value is "N/A" before the first frame
            try:
                out_time_us = int(value)
            except ValueError:
                continue
            percent = max(0, min(100, round(out_time_us / 1_000_000 / duration_sec * 100)))
            if percent != last_percent:
                logger.debug("Processing: %d%% done", percent)
                last_percent = percent
        elif key == "progress" and value == "end":
            logger.debug("ffmpeg reported end of stream")


async def _run_engine(
    proc: asyncio.subprocess.Process,
    duration_sec: float | None,
) -> tuple[int, bytes]:
    """Drain both pipes concurrently and wait for exit."""
    stderr_task = asyncio.create_task(proc.stderr.read())
    try:
        await _watch_progress(proc.stdout, duration_sec)
        stderr = await stderr_task
    finally:
        if not stderr_task.done():
            stderr_task.cancel()
    returncode = await proc.wait()
    return returncode, stderr


async def _terminate(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
    await proc.wait()


# --- Invoker ---


async def transcode(
    input_path: str | Path,
    output_path: str | Path,
    options: TranscodeOptions | None = None,
    timeout: float | None = None,
) -> TranscodeResult:
    """Remove silences from input_path and encode MP3 to output_path.

    Args:
        input_path: Existing, readable source file.
        output_path: Destination path (overwritten if present).
        options: Transcode options (defaults: 128k, 0.5s, -50dB).
        timeout: Seconds before ffmpeg is killed (default FFMPEG_TIMEOUT_SECONDS).

    Returns:
        TranscodeResult. Never raises for engine failures.
    """
    input_path = Path(input_path)
    output_path = Path(output_path)
    options = options or TranscodeOptions()
    timeout = timeout if timeout is not None else config.FFMPEG_TIMEOUT_SECONDS

    if not input_path.is_file():
        return TranscodeResult.failure(
            TranscodeErrorCode.MISSING_INPUT,
            f"Input file does not exist: {input_path.name}",
        )

    # Duration only feeds progress percentages
    meta = await asyncio.to_thread(extract_audio_metadata, input_path)
    metrics = TranscodeMetrics(input_duration_sec=meta.duration_sec)

    cmd = build_ffmpeg_command(input_path, output_path, options)
    logger.info("Processing audio: %s -> %s", input_path.name, output_path.name)
    logger.info(
        "Options: bitrate=%s, minSilence=%ss, threshold=%s",
        options.bitrate,
        options.min_silence_duration,
        options.silence_threshold,
    )
    logger.info("ffmpeg command: %s", shlex.join(cmd))

    started = time.monotonic()
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError:
        logger.error("ffmpeg not found: %s", config.FFMPEG_BINARY)
        return TranscodeResult.failure(
            TranscodeErrorCode.ENGINE_ERROR,
            "FFmpeg processing failed: ffmpeg not found in PATH",
            metrics,
        )
    except OSError as e:
        logger.error("ffmpeg execution failed: %s", e)
        return TranscodeResult.failure(
            TranscodeErrorCode.ENGINE_ERROR,
            f"FFmpeg processing failed: {e}",
            metrics,
        )

    try:
        returncode, stderr = await asyncio.wait_for(
            _run_engine(proc, meta.duration_sec),
            timeout=timeout,
        )
    except TimeoutError:
        await _terminate(proc)
        metrics.elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.error("ffmpeg timed out after %s seconds", timeout)
        return TranscodeResult.failure(
            TranscodeErrorCode.ENGINE_ERROR,
            f"FFmpeg processing timed out after {timeout} seconds",
            metrics,
        )
    except asyncio.CancelledError:
        await _terminate(proc)
        raise

    metrics.elapsed_ms = int((time.monotonic() - started) * 1000)

    if returncode != 0:
        diagnostic = _format_diagnostic(stderr, input_path, output_path)
        logger.error("FFmpeg error: exit code %d", returncode)
        logger.error("FFmpeg stderr: %s", diagnostic)
        return TranscodeResult.failure(
            TranscodeErrorCode.ENGINE_ERROR,
            f"FFmpeg processing failed (exit code {returncode}): {diagnostic}",
            metrics,
        )

    logger.info("Audio processing completed successfully in %d ms", metrics.elapsed_ms)
    return TranscodeResult.success(output_path, metrics)


__all__ = [
    "TranscodeErrorCode",
    "TranscodeMetrics",
    "TranscodeResult",
    "build_silence_filter",
    "build_ffmpeg_command",
    "transcode",
]
