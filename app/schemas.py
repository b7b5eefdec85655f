"""Silence Strip - Pydantic models for options and API payloads.

Used by FastAPI for response documentation and by the service layer to
validate per-request transcode overrides.
"""

from datetime import datetime  # noqa: I001

from pydantic import BaseModel, ConfigDict, Field

from app.config import DEFAULT_BITRATE, DEFAULT_MIN_SILENCE_SEC, DEFAULT_SILENCE_THRESHOLD


# --- Value Objects ---


class TranscodeOptions(BaseModel):
    """Options for one transcode invocation.

    Immutable: built once per request from optional overrides and never
    mutated afterwards. Both ends of the silence-removal filter share
    min_silence_duration and silence_threshold.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    bitrate: str = Field(
        default=DEFAULT_BITRATE,
        pattern=r"^[1-9]\d*k?$",
        description="Target audio bitrate (e.g. 128k)",
    )
    min_silence_duration: float = Field(
        default=DEFAULT_MIN_SILENCE_SEC,
        gt=0,
        le=60,
        description="Minimum silence length in seconds to remove",
    )
    silence_threshold: str = Field(
        default=DEFAULT_SILENCE_THRESHOLD,
        pattern=r"^(-?\d+(\.\d+)?dB|0\.\d*[1-9]\d*|1(\.0+)?)$",
        description="Level below which audio counts as silence (dB or linear amplitude)",
    )


# --- Response Models ---


class HealthResponse(BaseModel):
    """Response for the health endpoint."""

    model_config = ConfigDict(extra="forbid")

    status: str = Field(default="ok", description="Service status")
    timestamp: datetime = Field(..., description="Server time (UTC)")


class ErrorResponse(BaseModel):
    """Response for failed processing requests.

    details is only populated for server-side failures.
    """

    model_config = ConfigDict(extra="forbid")

    error: str = Field(..., description="Human-readable error description")
    details: str | None = Field(default=None, description="Underlying cause, if any")


__all__ = [
    "TranscodeOptions",
    "HealthResponse",
    "ErrorResponse",
]
