"""Silence Strip - Audio processing service logic.

Core request logic implementing:
- Upload validation (presence, MIME type / extension)
- Bounded ingest of the upload stream into scratch storage
- Transcode orchestration with guaranteed scratch cleanup

Per request, steps run strictly in order:
    Received -> Validating -> Ingesting -> Transcoding -> Responding -> Done
Any step may end the request in Failed(reason). The scratch pair is released
on every exit path by app.utils.scratch.working_files().
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError

from app import config
from app.schemas import TranscodeOptions
from app.transcoder import TranscodeErrorCode, transcode
from app.utils.audio_meta import guess_format_from_extension
from app.utils.scratch import working_files
from app.utils.stream_io import SizeLimitExceededError, write_stream_limited

if TYPE_CHECKING:
    from typing import BinaryIO

    from fastapi import UploadFile

logger = logging.getLogger(__name__)


# --- Error Codes ---


class ProcessingErrorCode(StrEnum):
    """Failure reasons for one processing request."""

    NO_FILE_PROVIDED = "NO_FILE_PROVIDED"
    UNSUPPORTED_TYPE = "UNSUPPORTED_TYPE"
    INVALID_OPTIONS = "INVALID_OPTIONS"
    PAYLOAD_TOO_LARGE = "PAYLOAD_TOO_LARGE"
    IO_ERROR = "IO_ERROR"
    ENGINE_ERROR = "ENGINE_ERROR"
    MISSING_INPUT = "MISSING_INPUT"


class ProcessingError(Exception):
    """Base exception for processing errors."""

    def __init__(self, error_code: str, message: str):
        self.error_code = error_code
        self.message = message
        super().__init__(f"{error_code}: {message}")


class NoFileProvidedError(ProcessingError):
    """Request carried no file part."""

    def __init__(self):
        super().__init__(ProcessingErrorCode.NO_FILE_PROVIDED, "No audio file provided")


class UnsupportedTypeError(ProcessingError):
    """Upload is neither an audio MIME type nor an .oga file."""

    def __init__(self):
        super().__init__(
            ProcessingErrorCode.UNSUPPORTED_TYPE,
            "Invalid file type. Expected audio file or .oga format",
        )


class InvalidOptionsError(ProcessingError):
    """Transcode overrides failed validation."""

    def __init__(self, reason: str):
        super().__init__(ProcessingErrorCode.INVALID_OPTIONS, f"Invalid options: {reason}")


class PayloadTooLargeError(ProcessingError):
    """Upload exceeded the byte ceiling."""

    def __init__(self, limit: int):
        if limit >= 1024 * 1024:
            readable = f"{limit // (1024 * 1024)} MB"
        else:
            readable = f"{limit} bytes"
        super().__init__(
            ProcessingErrorCode.PAYLOAD_TOO_LARGE,
            f"File too large. Maximum size is {readable}",
        )


class ScratchIOError(ProcessingError):
    """Read or write against scratch storage failed."""

    def __init__(self, reason: str):
        super().__init__(ProcessingErrorCode.IO_ERROR, reason)


class EngineError(ProcessingError):
    """ffmpeg reported a failure."""

    def __init__(self, message: str):
        super().__init__(ProcessingErrorCode.ENGINE_ERROR, message)


class MissingInputError(ProcessingError):
    """Input vanished before the engine was started."""

    def __init__(self, message: str):
        super().__init__(ProcessingErrorCode.MISSING_INPUT, message)


# --- Result Types ---


@dataclass
class UploadedAsset:
    """An upload materialized to a scratch input file."""

    filename: str
    content_type: str
    size_bytes: int
    path: Path


@dataclass
class ProcessedAudio:
    """Result of a successful processing request."""

    request_id: str
    content: bytes
    input_bytes: int
    media_type: str = config.OUTPUT_MEDIA_TYPE
    filename: str = config.OUTPUT_FILENAME


# --- Validation ---


def is_supported_upload(filename: str | None, content_type: str | None) -> bool:
    """Accept audio MIME types, or the source extension as a fallback."""
    if content_type and "audio" in content_type:
        return True
    if not filename:
        return False
    return guess_format_from_extension(filename) == config.SOURCE_EXTENSION.lstrip(".")


def validate_upload(upload: UploadFile | None) -> UploadFile:
    """Check presence and declared type of an upload.

    Raises:
        NoFileProvidedError: If no file part is present.
        UnsupportedTypeError: If neither MIME type nor extension qualifies.
    """
    if upload is None:
        raise NoFileProvidedError()
    if not is_supported_upload(upload.filename, upload.content_type):
        raise UnsupportedTypeError()
    return upload


def build_options(overrides: dict[str, Any] | None = None) -> TranscodeOptions:
    """Build TranscodeOptions from optional overrides (None values ignored).

    Raises:
        InvalidOptionsError: If an override fails validation.
    """
    values = {k: v for k, v in (overrides or {}).items() if v is not None}
    try:
        return TranscodeOptions(**values)
    except ValidationError as e:
        reasons = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise InvalidOptionsError(reasons) from e


# --- Ingest ---


def ingest_upload(
    stream: BinaryIO,
    filename: str,
    content_type: str,
    dest_path: Path,
    max_bytes: int = config.MAX_UPLOAD_BYTES,
) -> UploadedAsset:
    """Stream an upload into its scratch input file.

    The partially written file is left in place on failure; the caller's
    scratch scope removes it.

    Args:
        stream: File-like object with read() method.
        filename: Declared filename.
        content_type: Declared MIME type.
        dest_path: Scratch input path.
        max_bytes: Size ceiling.

    Returns:
        UploadedAsset describing the fully written, closed file.

    Raises:
        PayloadTooLargeError: If the stream exceeds max_bytes.
        ScratchIOError: If reading the stream or writing the file fails.
    """
    try:
        size_bytes = write_stream_limited(
            stream,
            dest_path,
            max_bytes=max_bytes,
            chunk_size=config.UPLOAD_CHUNK_SIZE,
        )
    except SizeLimitExceededError as e:
        raise PayloadTooLargeError(e.limit) from e
    except OSError as e:
        raise ScratchIOError(f"Failed to store upload: {e.strerror or e}") from e

    return UploadedAsset(
        filename=filename,
        content_type=content_type,
        size_bytes=size_bytes,
        path=dest_path,
    )


# --- Orchestration ---


async def process_upload(
    upload: UploadFile | None,
    overrides: dict[str, Any] | None = None,
    max_bytes: int = config.MAX_UPLOAD_BYTES,
) -> ProcessedAudio:
    """Run one upload through ingest, transcode and read-back.

    Args:
        upload: The multipart file part (None if absent).
        overrides: Optional TranscodeOptions overrides.
        max_bytes: Size ceiling for the upload.

    Returns:
        ProcessedAudio with the encoded bytes.

    Raises:
        ProcessingError: Subclass matching the terminal Failed(reason).
    """
    upload = validate_upload(upload)
    options = build_options(overrides)
    filename = upload.filename or "unknown"
    content_type = upload.content_type or "application/octet-stream"

    with working_files() as pair:
        logger.info(
            "Processing audio file: %s, type: %s (request_id=%s)",
            filename,
            content_type,
            pair.request_id,
        )

        asset = await run_in_threadpool(
            ingest_upload,
            upload.file,
            filename,
            content_type,
            pair.input_path,
            max_bytes,
        )
        logger.debug("Ingested %d bytes (request_id=%s)", asset.size_bytes, pair.request_id)

        result = await transcode(asset.path, pair.output_path, options)
        if not result.ok:
            if result.error_code == TranscodeErrorCode.MISSING_INPUT:
                raise MissingInputError(result.message or "Input file does not exist")
            raise EngineError(result.message or "FFmpeg processing failed")

        try:
            content = await run_in_threadpool(result.output_path.read_bytes)
        except OSError as e:
            raise ScratchIOError(f"Failed to read processed audio: {e.strerror or e}") from e

        logger.info(
            "Processed %s: %d -> %d bytes (request_id=%s)",
            filename,
            asset.size_bytes,
            len(content),
            pair.request_id,
        )
        return ProcessedAudio(
            request_id=pair.request_id,
            content=content,
            input_bytes=asset.size_bytes,
        )
