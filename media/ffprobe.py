"""Wrapper utilities for retrieving media information using ffprobe."""

from __future__ import annotations

import json
import subprocess

from config.settings import PROBE_TIMEOUT_SECONDS

FFPROBE_BINARY = "ffprobe"


def read_audio_streams(file_path: str, *, timeout: float = PROBE_TIMEOUT_SECONDS) -> dict:
    """Return the parsed ``ffprobe`` JSON payload for the audio streams of ``file_path``.

    The payload carries ``streams`` (audio only) and ``format``.

    Raises:
        RuntimeError: If ``ffprobe`` fails, times out or is missing.
        ValueError: If the output is not a JSON object.
    """
    command = [
        FFPROBE_BINARY,
        "-v",
        "error",
        "-select_streams",
        "a",
        "-print_format",
        "json",
        "-show_streams",
        "-show_format",
        file_path,
    ]
    try:
        completed = subprocess.run(command, capture_output=True, text=True, check=True, timeout=timeout)
    except FileNotFoundError as exc:
        raise RuntimeError("ffprobe is not installed or not available in PATH") from exc
    except subprocess.TimeoutExpired as exc:
        raise RuntimeError(f"ffprobe gave up on {file_path} after {timeout:.0f}s") from exc
    except subprocess.CalledProcessError as exc:
        raise RuntimeError(f"ffprobe rejected {file_path}: {(exc.stderr or '').strip() or exc}") from exc

    try:
        payload = json.loads(completed.stdout or "{}")
    except json.JSONDecodeError as exc:
        raise ValueError(f"ffprobe printed non-JSON output for {file_path}") from exc
    if not isinstance(payload, dict):
        raise ValueError(f"ffprobe printed a {type(payload).__name__} instead of an object for {file_path}")
    return payload


def get_audio_codec(file_path: str, *, timeout: float = PROBE_TIMEOUT_SECONDS) -> str | None:
    """Return the codec name of the first audio stream, or ``None`` if there is none."""
    streams = read_audio_streams(file_path, timeout=timeout).get("streams") or []
    for stream in streams:
        if isinstance(stream, dict) and stream.get("codec_name"):
            return str(stream["codec_name"])
    return None
