"""Silence Strip - Audio API FastAPI application.

FastAPI service exposing:
- GET /health
- POST /process-audio (multipart upload -> silence-stripped MP3)

Processing is synchronous: the response carries the transcoded bytes and
all scratch files for the request are gone before it is sent.

Run with:
    silence-strip                                   # HOST/PORT from environment
    uvicorn services.audio_api.main:app --reload    # dev server only
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Annotated

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from starlette.datastructures import Headers
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from app import config
from app.schemas import ErrorResponse, HealthResponse
from services.audio_api.service import (
    InvalidOptionsError,
    NoFileProvidedError,
    PayloadTooLargeError,
    ProcessingError,
    ProcessingErrorCode,
    process_upload,
)

logger = logging.getLogger(__name__)

# Transport-level ceiling, checked before multipart parsing
MAX_REQUEST_BYTES = config.MAX_UPLOAD_BYTES

SERVER_ERROR_MESSAGE = "Failed to process audio"


# --- Lifespan ---


def _prepare_scratch_dir_safe() -> None:
    """Create the scratch directory and clear orphans (best-effort).

    Never crashes startup; allocate() creates the directory again on demand.
    """
    from app.utils.scratch import cleanup_orphan_scratch_files, ensure_scratch_dir

    try:
        scratch_dir = ensure_scratch_dir()
        removed = cleanup_orphan_scratch_files(scratch_dir)
        if removed > 0:
            logger.info("Startup cleanup: removed %d orphan scratch files", removed)
    except Exception:
        logger.warning("Scratch directory preparation failed (non-fatal)", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    _prepare_scratch_dir_safe()
    logger.info("Silence Strip audio service ready (scratch=%s)", config.SCRATCH_DIR)
    yield


# --- FastAPI App ---


app = FastAPI(
    title="Silence Strip - Audio API",
    description="Removes silences from uploaded audio and returns MP3.",
    version="0.1.0",
    lifespan=lifespan,
)


# --- Error Handling ---


def error_code_to_status(error_code: str) -> int:
    """Map error codes to HTTP status codes.

    - NO_FILE_PROVIDED, UNSUPPORTED_TYPE, INVALID_OPTIONS -> 400
    - PAYLOAD_TOO_LARGE -> 413
    - IO_ERROR, ENGINE_ERROR, MISSING_INPUT -> 500
    """
    if error_code in (
        ProcessingErrorCode.NO_FILE_PROVIDED,
        ProcessingErrorCode.UNSUPPORTED_TYPE,
        ProcessingErrorCode.INVALID_OPTIONS,
    ):
        return 400
    if error_code == ProcessingErrorCode.PAYLOAD_TOO_LARGE:
        return 413
    return 500


def make_error_response(error_code: str, error_message: str) -> JSONResponse:
    """Create a JSON error response.

    Client errors carry the message as "error"; server errors carry a
    generic "error" and the underlying cause as "details".
    """
    status_code = error_code_to_status(error_code)
    if status_code >= 500:
        body = ErrorResponse(error=SERVER_ERROR_MESSAGE, details=error_message)
    else:
        body = ErrorResponse(error=error_message)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


class RequestBodyTooLargeError(HTTPException):
    """Raised from the wrapped receive() once the streamed body passes the ceiling."""

    def __init__(self, limit: int):
        super().__init__(status_code=413, detail=PayloadTooLargeError(limit).message)


class LimitRequestBodyMiddleware:
    """Enforce MAX_REQUEST_BYTES before the body reaches multipart parsing.

    A declared Content-Length over the ceiling is rejected up front. Bodies
    without one (chunked transfer) are counted as they are received.
    """

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        limit = MAX_REQUEST_BYTES
        content_length = Headers(scope=scope).get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > limit:
            logger.info("Rejected request body of %s bytes", content_length)
            error = PayloadTooLargeError(limit)
            response = make_error_response(error.error_code, error.message)
            await response(scope, receive, send)
            return

        received = 0

        async def limited_receive() -> Message:
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > limit:
                    logger.info("Rejected streamed request body over %d bytes", limit)
                    raise RequestBodyTooLargeError(limit)
            return message

        await self.app(scope, limited_receive, send)


app.add_middleware(LimitRequestBodyMiddleware)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Render framework HTTP errors (body parse failures, 404, 405) as {"error": ...}."""
    body = ErrorResponse(error=str(exc.detail))
    return JSONResponse(
        status_code=exc.status_code,
        content=body.model_dump(exclude_none=True),
        headers=exc.headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Map request validation failures onto processing error codes.

    A `file` field that is not a file part counts as no file at all.
    """
    errors = exc.errors()
    if any("file" in tuple(err.get("loc", ())) for err in errors):
        error = NoFileProvidedError()
    else:
        reasons = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg', '')}"
            for err in errors
        )
        error = InvalidOptionsError(reasons)
    logger.info("Rejected upload: %s", error.message)
    return make_error_response(error.error_code, error.message)


# --- Endpoints ---


@app.get("/health", response_model=HealthResponse, summary="Health check")
def health_check():
    """Simple health check endpoint."""
    return HealthResponse(status="ok", timestamp=datetime.now(UTC))


@app.post(
    "/process-audio",
    response_class=Response,
    responses={
        200: {"content": {config.OUTPUT_MEDIA_TYPE: {}}, "description": "Processed MP3"},
        400: {"model": ErrorResponse, "description": "Missing file, bad type or options"},
        413: {"model": ErrorResponse, "description": "Upload too large"},
        500: {"model": ErrorResponse, "description": "Processing failed"},
    },
    summary="Remove silences and convert to MP3",
    description="Upload an audio file; receive the silence-stripped MP3.",
)
async def process_audio(
    file: Annotated[UploadFile | None, File(description="Audio file to process")] = None,
    bitrate: Annotated[str | None, Form(description="Target bitrate, e.g. 128k")] = None,
    min_silence_duration: Annotated[
        str | None, Form(description="Minimum silence length in seconds")
    ] = None,
    silence_threshold: Annotated[
        str | None, Form(description="Silence threshold, e.g. -50dB")
    ] = None,
):
    """Process an uploaded audio file.

    Accepts multipart form data with:
    - file: The audio file (required; audio/* MIME type or .oga filename)
    - bitrate, min_silence_duration, silence_threshold: Optional overrides
    """
    overrides = {
        "bitrate": bitrate,
        "min_silence_duration": min_silence_duration,
        "silence_threshold": silence_threshold,
    }

    try:
        processed = await process_upload(file, overrides, max_bytes=config.MAX_UPLOAD_BYTES)
    except ProcessingError as e:
        if error_code_to_status(e.error_code) >= 500:
            logger.error("Error processing audio: %s", e.message)
        else:
            logger.info("Rejected upload: %s", e.message)
        return make_error_response(e.error_code, e.message)
    except Exception:
        logger.exception("Unexpected error during audio processing")
        return make_error_response(
            ProcessingErrorCode.IO_ERROR,
            "An unexpected error occurred during audio processing",
        )

    return Response(
        content=processed.content,
        media_type=processed.media_type,
        headers={"Content-Disposition": f'attachment; filename="{processed.filename}"'},
    )


# --- Entrypoint ---


def run() -> None:
    """Start the service with uvicorn using HOST/PORT from the environment."""
    import uvicorn

    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("Starting Silence Strip audio service on http://%s:%d", config.HOST, config.PORT)
    uvicorn.run(app, host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    run()
