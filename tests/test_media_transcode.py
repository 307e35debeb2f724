from __future__ import annotations

from pathlib import Path

import pytest

from engine.errors import TranscodeError
from media import transcode as transcode_module
from media.ffmpeg import FFmpegError
from media.transcode import AUDIO_TARGETS, build_transcode_args, get_audio_target, transcode


def test_get_audio_target_rejects_unknown_format() -> None:
    with pytest.raises(ValueError):
        get_audio_target("wav")
    assert get_audio_target(".MP3").encoder == "libmp3lame"


def test_build_transcode_args_copies_matching_codec() -> None:
    args = build_transcode_args("in.m4a", "out.m4a", AUDIO_TARGETS["m4a"], source_codec="aac")

    assert args[args.index("-c:a") + 1] == "copy"
    assert "-b:a" not in args
    assert args[args.index("-map_metadata") + 1] == "-1"


def test_build_transcode_args_encodes_with_bitrate() -> None:
    args = build_transcode_args("in.webm", "out.mp3", AUDIO_TARGETS["mp3"], source_codec="opus", bitrate="256k")

    assert args[args.index("-c:a") + 1] == "libmp3lame"
    assert args[args.index("-b:a") + 1] == "256k"
    assert args[-3:] == ["-f", "mp3", "out.mp3"]


def test_build_transcode_args_skips_bitrate_for_lossless() -> None:
    args = build_transcode_args("in.webm", "out.flac", AUDIO_TARGETS["flac"], source_codec="opus")

    assert "-b:a" not in args


def test_transcode_runs_ffmpeg_and_returns_output(monkeypatch, tmp_path: Path) -> None:
    captured = {}

    def _fake_run(args, *, timeout=None, cancel_event=None):
        captured["args"] = args
        captured["timeout"] = timeout
        Path(args[-1]).write_bytes(b"mp3-data")

    monkeypatch.setattr(transcode_module, "get_audio_codec", lambda _path: "opus")
    monkeypatch.setattr(transcode_module, "run_ffmpeg", _fake_run)
    source = tmp_path / "source.webm"
    source.write_bytes(b"webm-data")
    output = tmp_path / "transcoded.mp3"

    result = transcode(str(source), str(output), audio_format="mp3", timeout=30)

    assert result == str(output)
    assert captured["timeout"] == 30
    assert "libmp3lame" in captured["args"]


def test_transcode_raises_when_no_audio_stream(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setattr(transcode_module, "get_audio_codec", lambda _path: None)

    with pytest.raises(TranscodeError):
        transcode(str(tmp_path / "in.webm"), str(tmp_path / "out.mp3"))


def test_transcode_wraps_stream_inspection_failure(monkeypatch, tmp_path: Path) -> None:
    def _raise_inspection_error(_path):
        raise RuntimeError("ffprobe is not installed or not available in PATH")

    monkeypatch.setattr(transcode_module, "get_audio_codec", _raise_inspection_error)

    with pytest.raises(TranscodeError) as excinfo:
        transcode(str(tmp_path / "in.webm"), str(tmp_path / "out.mp3"))

    assert excinfo.value.message == "Failed to convert audio"


def test_transcode_wraps_ffmpeg_failure(monkeypatch, tmp_path: Path) -> None:
    def _failing_run(_args, **_kwargs):
        raise FFmpegError("ffmpeg timed out after 5s")

    monkeypatch.setattr(transcode_module, "get_audio_codec", lambda _path: "opus")
    monkeypatch.setattr(transcode_module, "run_ffmpeg", _failing_run)

    with pytest.raises(TranscodeError):
        transcode(str(tmp_path / "in.webm"), str(tmp_path / "out.mp3"))


def test_transcode_rejects_empty_output(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setattr(transcode_module, "get_audio_codec", lambda _path: "opus")
    monkeypatch.setattr(transcode_module, "run_ffmpeg", lambda args, **_kwargs: Path(args[-1]).write_bytes(b""))

    with pytest.raises(TranscodeError):
        transcode(str(tmp_path / "in.webm"), str(tmp_path / "out.mp3"))
