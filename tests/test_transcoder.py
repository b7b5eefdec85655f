"""Tests for the transcode invoker (app/transcoder.py).

ffmpeg is replaced by small /bin/sh scripts so the real subprocess
plumbing is exercised without ffmpeg installed.
"""

import asyncio
import logging
import time

import pytest

from app.schemas import TranscodeOptions
from app.transcoder import (
    TranscodeErrorCode,
    build_ffmpeg_command,
    build_silence_filter,
    transcode,
)
from app.utils.audio_meta import RawAudioMetadata


@pytest.fixture
def input_file(tmp_path):
    path = tmp_path / "input_1_req.oga"
    path.write_bytes(b"OggS fake audio payload")
    return path


class TestCommandConstruction:
    def test_silence_filter_defaults(self):
        assert build_silence_filter(TranscodeOptions()) == (
            "silenceremove=start_periods=1:start_duration=0.5:start_threshold=-50dB"
            ":stop_periods=-1:stop_duration=0.5:stop_threshold=-50dB"
        )

    def test_silence_filter_overrides(self):
        options = TranscodeOptions(min_silence_duration=1.25, silence_threshold="-35dB")

        expr = build_silence_filter(options)

        assert "start_duration=1.25" in expr
        assert "stop_duration=1.25" in expr
        assert "start_threshold=-35dB" in expr
        assert "stop_threshold=-35dB" in expr

    def test_silence_filter_small_duration_is_plain_decimal(self):
        options = TranscodeOptions(min_silence_duration=0.00001)

        expr = build_silence_filter(options)

        assert "start_duration=0.00001:" in expr
        assert "e-0" not in expr

    def test_command_shape(self, monkeypatch):
        monkeypatch.setattr("app.config.FFMPEG_BINARY", "ffmpeg")

        cmd = build_ffmpeg_command("/tmp/in.oga", "/tmp/out.mp3", TranscodeOptions(bitrate="96k"))

        assert cmd[0] == "ffmpeg"
        assert "-y" in cmd
        assert cmd[cmd.index("-i") + 1] == "/tmp/in.oga"
        assert cmd[cmd.index("-c:a") + 1] == "libmp3lame"
        assert cmd[cmd.index("-b:a") + 1] == "96k"
        assert cmd[cmd.index("-f") + 1] == "mp3"
        assert cmd[cmd.index("-af") + 1].startswith("silenceremove=")
        assert cmd[-1] == "/tmp/out.mp3"


class TestTranscode:
    def test_success(self, fake_engine, input_file, tmp_path):
        args_file = tmp_path / "args.txt"
        fake_engine(f'printf "%s\\n" "$@" > "{args_file}"\ncp "$src" "$dst"\n')
        output = tmp_path / "output_1_req.mp3"

        result = asyncio.run(transcode(input_file, output, TranscodeOptions()))

        assert result.ok is True
        assert result.output_path == output
        assert result.error_code is None
        assert output.read_bytes() == input_file.read_bytes()
        args = args_file.read_text().splitlines()
        assert "libmp3lame" in args
        assert "128k" in args

    def test_missing_input_skips_engine(self, fake_engine, tmp_path):
        marker = tmp_path / "ran"
        fake_engine(f'touch "{marker}"\n')

        result = asyncio.run(transcode(tmp_path / "absent.oga", tmp_path / "out.mp3"))

        assert result.ok is False
        assert result.error_code == TranscodeErrorCode.MISSING_INPUT
        assert "absent.oga" in result.message
        assert not marker.exists()

    def test_engine_failure_carries_stderr(self, fake_engine, input_file, tmp_path):
        fake_engine('echo "$src: Invalid data found when processing input" >&2\nexit 1\n')

        result = asyncio.run(transcode(input_file, tmp_path / "out.mp3"))

        assert result.ok is False
        assert result.error_code == TranscodeErrorCode.ENGINE_ERROR
        assert "exit code 1" in result.message
        assert "Invalid data found when processing input" in result.message
        # Scratch paths are reduced to file names
        assert str(input_file) not in result.message
        assert input_file.name in result.message

    def test_engine_binary_missing(self, monkeypatch, input_file, tmp_path):
        monkeypatch.setattr("app.config.FFMPEG_BINARY", str(tmp_path / "no-ffmpeg"))
        monkeypatch.setattr("app.config.FFPROBE_BINARY", str(tmp_path / "no-ffprobe"))

        result = asyncio.run(transcode(input_file, tmp_path / "out.mp3"))

        assert result.ok is False
        assert result.error_code == TranscodeErrorCode.ENGINE_ERROR
        assert "not found" in result.message

    def test_timeout_kills_engine(self, fake_engine, input_file, tmp_path):
        fake_engine("exec sleep 5\n")

        started = time.monotonic()
        result = asyncio.run(transcode(input_file, tmp_path / "out.mp3", timeout=0.5))

        assert time.monotonic() - started < 4
        assert result.ok is False
        assert result.error_code == TranscodeErrorCode.ENGINE_ERROR
        assert "timed out" in result.message

    def test_progress_is_logged_only(
        self, fake_engine, input_file, tmp_path, monkeypatch, caplog
    ):
        fake_engine(
            'echo "out_time_us=N/A"\n'
            'echo "out_time_us=500000"\n'
            'echo "out_time_us=1000000"\n'
            'echo "progress=end"\n'
            'cp "$src" "$dst"\n'
        )
        monkeypatch.setattr(
            "app.transcoder.extract_audio_metadata",
            lambda path: RawAudioMetadata(duration_sec=1.0),
        )
        caplog.set_level(logging.DEBUG, logger="app.transcoder")

        result = asyncio.run(transcode(input_file, tmp_path / "out.mp3"))

        assert result.ok is True
        assert result.metrics.input_duration_sec == 1.0
        messages = [r.getMessage() for r in caplog.records]
        assert "Processing: 50% done" in messages
        assert "Processing: 100% done" in messages

    def test_concurrent_invocations_independent(self, fake_engine, tmp_path):
        fake_engine('sleep 0.5\ncp "$src" "$dst"\n')
        inputs = []
        for i in range(5):
            path = tmp_path / f"in_{i}.oga"
            path.write_bytes(f"payload-{i}".encode())
            inputs.append(path)

        async def _run_all():
            return await asyncio.gather(
                *(transcode(p, p.with_suffix(".mp3")) for p in inputs)
            )

        started = time.monotonic()
        results = asyncio.run(_run_all())

        # Five 0.5s engine runs overlap rather than queueing
        assert time.monotonic() - started < 2.0
        for i, result in enumerate(results):
            assert result.ok
            assert result.output_path.read_bytes() == f"payload-{i}".encode()
