"""Silence Strip - Bounded stream I/O utilities.

Copies an upload stream to a scratch file in fixed-size chunks while
enforcing a byte ceiling. The destination is left in place on failure:
removing partial files is the scratch owner's job (see app.utils.scratch).
"""

import os
from pathlib import Path


class SizeLimitExceededError(Exception):
    """Stream produced more bytes than allowed."""

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Stream exceeds {limit} bytes")


def _write_all(fd: int, data: bytes) -> None:
    """Write all bytes to a file descriptor, handling partial writes.

    Loops until all bytes are written, handling short writes and EINTR.

    Args:
        fd: File descriptor to write to.
        data: Bytes to write.

    Raises:
        OSError: If write fails or returns 0 bytes unexpectedly.
    """
    total_written = 0
    data_len = len(data)

    while total_written < data_len:
        try:
            written = os.write(fd, data[total_written:])
            if written == 0:
                raise OSError("os.write() returned 0 bytes unexpectedly")
            total_written += written
        except InterruptedError:
            continue


def write_stream_limited(
    stream,
    dest_path: str | Path,
    max_bytes: int,
    chunk_size: int = 65536,
) -> int:
    """Write a stream to a file, aborting once max_bytes is exceeded.

    The file is flushed, fsynced and closed before returning.

    Args:
        stream: File-like object with read() method.
        dest_path: Target path (truncated if it exists).
        max_bytes: Maximum number of bytes accepted.
        chunk_size: Buffer size for reading (default: 64KB).

    Returns:
        Total bytes written.

    Raises:
        SizeLimitExceededError: If the stream holds more than max_bytes.
        OSError: If read or write fails.
    """
    dest_path = Path(dest_path)
    total_bytes = 0

    fd = os.open(dest_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    try:
        while True:
            chunk = stream.read(chunk_size)
            if not chunk:
                break
            total_bytes += len(chunk)
            if total_bytes > max_bytes:
                raise SizeLimitExceededError(max_bytes)
            _write_all(fd, chunk)

        os.fsync(fd)
    finally:
        os.close(fd)

    return total_bytes


__all__ = [
    "SizeLimitExceededError",
    "write_stream_limited",
]
