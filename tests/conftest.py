"""Shared pytest fixtures for Silence Strip tests.

This module contains common fixtures used across multiple test files,
reducing duplication and improving test maintainability.
"""

import math
import stat
import struct
import wave
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from app.transcoder import TranscodeMetrics, TranscodeResult
from services.audio_api.main import app

SAMPLE_RATE = 22050

# Parses "$@" of a fake ffmpeg: $src follows -i, $dst is the last argument
FAKE_ENGINE_ARG_PARSE = """
src=""
prev=""
for arg in "$@"; do
  if [ "$prev" = "-i" ]; then src="$arg"; fi
  prev="$arg"
done
dst="$prev"
"""


def _write_wav(path: Path, silence_sec: float = 0.0, tone_sec: float = 1.0) -> Path:
    """Write a mono 16-bit WAV: optional silent lead-in followed by a 440 Hz tone."""
    path.parent.mkdir(parents=True, exist_ok=True)
    silent_frames = int(silence_sec * SAMPLE_RATE)
    tone_frames = int(tone_sec * SAMPLE_RATE)

    with wave.open(str(path), "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(SAMPLE_RATE)
        wf.writeframes(b"\x00\x00" * silent_frames)
        wf.writeframes(
            b"".join(
                struct.pack("<h", int(16000 * math.sin(2 * math.pi * 440 * i / SAMPLE_RATE)))
                for i in range(tone_frames)
            )
        )
    return path


@pytest.fixture
def scratch_dir(tmp_path, monkeypatch):
    """Isolated scratch directory patched into config.

    Yields:
        Path: The scratch directory (created).
    """
    directory = tmp_path / "scratch"
    directory.mkdir()
    monkeypatch.setattr("app.config.SCRATCH_DIR", directory)
    yield directory


@pytest.fixture
def client(scratch_dir):
    """Create a FastAPI test client using the isolated scratch directory.

    Yields:
        tuple: (test_client, scratch_dir)
    """
    with TestClient(app) as test_client:
        yield test_client, scratch_dir


@pytest.fixture
def fake_transcode(monkeypatch):
    """Replace the ffmpeg invoker with an in-process fake.

    The fake writes b"ID3" + input bytes to the output path, so each
    response can be traced back to its own upload. Calls are recorded.

    Yields:
        list: Recorded (input_path, output_path, options) tuples.
    """
    calls = []

    async def _fake(input_path, output_path, options=None, timeout=None):
        calls.append((Path(input_path), Path(output_path), options))
        Path(output_path).write_bytes(b"ID3" + Path(input_path).read_bytes())
        return TranscodeResult.success(Path(output_path), TranscodeMetrics())

    monkeypatch.setattr("services.audio_api.service.transcode", _fake)
    yield calls


@pytest.fixture
def fake_engine(tmp_path, monkeypatch):
    """Install a /bin/sh script as FFMPEG_BINARY.

    ffprobe is pointed at a missing binary, so metadata probing fails fast.

    Returns:
        callable: Takes the script body (after argument parsing), returns its path.
    """
    monkeypatch.setattr("app.config.FFPROBE_BINARY", str(tmp_path / "no-ffprobe"))

    def _install(body: str) -> Path:
        script = tmp_path / "fake-ffmpeg"
        script.write_text("#!/bin/sh\n" + FAKE_ENGINE_ARG_PARSE + body)
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        monkeypatch.setattr("app.config.FFMPEG_BINARY", str(script))
        return script

    return _install


@pytest.fixture
def make_wav(tmp_path):
    """Factory for WAV fixtures: make_wav(name, silence_sec=0.0, tone_sec=1.0)."""

    def _make(name: str, silence_sec: float = 0.0, tone_sec: float = 1.0) -> Path:
        return _write_wav(tmp_path / name, silence_sec, tone_sec)

    return _make


@pytest.fixture
def sample_audio_file(make_wav):
    """Create a sample WAV audio file (1 second tone, mono, 22050 Hz).

    Returns:
        Path: Path to the WAV file.
    """
    return make_wav("sample.wav")
