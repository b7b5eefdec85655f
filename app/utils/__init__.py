"""Silence Strip - Utility modules."""

from app.utils.audio_meta import extract_audio_metadata, guess_format_from_extension, probe_audio
from app.utils.scratch import WorkingFilePair, allocate, release, working_files
from app.utils.stream_io import SizeLimitExceededError, write_stream_limited

__all__ = [
    # audio_meta
    "probe_audio",
    "extract_audio_metadata",
    "guess_format_from_extension",
    # scratch
    "WorkingFilePair",
    "allocate",
    "release",
    "working_files",
    # stream_io
    "SizeLimitExceededError",
    "write_stream_limited",
]
