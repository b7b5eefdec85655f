"""Silence Strip - Transient scratch storage.

Allocates per-request working file paths in the scratch directory and
guarantees their removal. Paths are unique per request (millisecond
timestamp + uuid4 token), so concurrent requests never share a file and
no locking is needed.

allocate() only derives paths and ensures the directory exists. Files are
created by the code that writes them.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from app import config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkingFilePair:
    """Input/output scratch paths owned by a single request."""

    request_id: str
    input_path: Path
    output_path: Path

    def paths(self) -> tuple[Path, Path]:
        return (self.input_path, self.output_path)


def generate_request_id() -> str:
    """Generate a unique request ID.

    Uses UUID4 for uniqueness. Format: uuid4 hex (32 chars).
    """
    return uuid.uuid4().hex


def ensure_scratch_dir(scratch_dir: str | Path | None = None) -> Path:
    """Create the scratch directory if missing (idempotent).

    Args:
        scratch_dir: Override directory (defaults to config.SCRATCH_DIR).

    Returns:
        The scratch directory path.
    """
    directory = Path(scratch_dir) if scratch_dir is not None else config.SCRATCH_DIR
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def allocate(
    request_id: str | None = None,
    scratch_dir: str | Path | None = None,
) -> WorkingFilePair:
    """Allocate a WorkingFilePair for one request.

    Args:
        request_id: Collision-resistant token (generated if omitted).
        scratch_dir: Override directory (defaults to config.SCRATCH_DIR).

    Returns:
        WorkingFilePair:
            {scratch}/input_{ms}_{request_id}.oga
            {scratch}/output_{ms}_{request_id}.mp3
    """
    directory = ensure_scratch_dir(scratch_dir)
    request_id = request_id or generate_request_id()
    stamp = f"{time.time_ns() // 1_000_000}_{request_id}"

    return WorkingFilePair(
        request_id=request_id,
        input_path=directory / f"{config.INPUT_PREFIX}{stamp}{config.INPUT_SUFFIX}",
        output_path=directory / f"{config.OUTPUT_PREFIX}{stamp}{config.OUTPUT_SUFFIX}",
    )


def release(pair: WorkingFilePair) -> None:
    """Delete both scratch files of a pair (best-effort).

    Never raises: by the time cleanup runs, the outcome of the request has
    been decided. Safe to call more than once.

    Args:
        pair: The pair returned by allocate().
    """
    for path in pair.paths():
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Failed to remove scratch file %s: %s", path, e)
        else:
            logger.debug("Released scratch file %s", path.name)


@contextmanager
def working_files(
    request_id: str | None = None,
    scratch_dir: str | Path | None = None,
) -> Iterator[WorkingFilePair]:
    """Scoped WorkingFilePair: released on every exit path.

    Usage:
        with working_files() as pair:
            ...  # write pair.input_path, produce pair.output_path
    """
    pair = allocate(request_id, scratch_dir)
    try:
        yield pair
    finally:
        release(pair)


def cleanup_orphan_scratch_files(scratch_dir: str | Path | None = None) -> int:
    """Remove working files left behind by a previous process.

    Called at startup, before any request owns a pair.

    Args:
        scratch_dir: Directory to scan (defaults to config.SCRATCH_DIR).

    Returns:
        Number of files removed.
    """
    directory = Path(scratch_dir) if scratch_dir is not None else config.SCRATCH_DIR
    removed = 0

    if not directory.exists():
        return 0

    patterns = (
        f"{config.INPUT_PREFIX}*{config.INPUT_SUFFIX}",
        f"{config.OUTPUT_PREFIX}*{config.OUTPUT_SUFFIX}",
    )
    for pattern in patterns:
        for orphan in directory.glob(pattern):
            try:
                orphan.unlink()
                removed += 1
            except OSError:
                pass  # Best-effort cleanup

    return removed


__all__ = [
    "WorkingFilePair",
    "allocate",
    "release",
    "working_files",
    "ensure_scratch_dir",
    "generate_request_id",
    "cleanup_orphan_scratch_files",
]
