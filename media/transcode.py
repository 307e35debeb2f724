"""Convert a downloaded audio container to the target audio format."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from engine.errors import TranscodeError
from media.ffmpeg import FFmpegError, run_ffmpeg
from media.ffprobe import get_audio_codec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AudioTarget:
    extension: str
    encoder: str
    # Codec names as reported by ffprobe that can be stream-copied.
    copy_codecs: frozenset
    muxer: str
    lossless: bool = False


AUDIO_TARGETS = {
    "mp3": AudioTarget("mp3", "libmp3lame", frozenset({"mp3"}), "mp3"),
    "m4a": AudioTarget("m4a", "aac", frozenset({"aac"}), "ipod"),
    "flac": AudioTarget("flac", "flac", frozenset({"flac"}), "flac", lossless=True),
}


def get_audio_target(audio_format: str) -> AudioTarget:
    key = str(audio_format or "").strip().lower().lstrip(".")
    try:
        return AUDIO_TARGETS[key]
    except KeyError:
        raise ValueError(f"Unsupported audio format: {audio_format!r}") from None


def build_transcode_args(input_path, output_path, target: AudioTarget, *, source_codec=None, bitrate="192k"):
    args = ["-i", input_path, "-vn", "-sn", "-dn", "-map", "0:a:0", "-map_metadata", "-1"]
    if source_codec and source_codec in target.copy_codecs:
        args.extend(["-c:a", "copy"])
    else:
        args.extend(["-c:a", target.encoder])
        if not target.lossless and bitrate:
            args.extend(["-b:a", bitrate])
    args.extend(["-f", target.muxer, output_path])
    return args


def transcode(
    input_path,
    output_path,
    *,
    audio_format="mp3",
    bitrate="192k",
    timeout=None,
    cancel_event=None,
):
    """Write the first audio stream of ``input_path`` to ``output_path``.

    No tags are written here; the muxing pass owns metadata.
    """
    target = get_audio_target(audio_format)
    try:
        source_codec = get_audio_codec(input_path)
    except (RuntimeError, ValueError) as exc:
        raise TranscodeError(f"stream inspection failed for {input_path}: {exc}") from exc
    if not source_codec:
        raise TranscodeError(f"no audio stream in {input_path}")

    args = build_transcode_args(input_path, output_path, target, source_codec=source_codec, bitrate=bitrate)
    logger.info(
        "Transcoding %s (%s) -> %s (%s)",
        os.path.basename(input_path),
        source_codec,
        os.path.basename(output_path),
        "copy" if "copy" in args else target.encoder,
    )
    try:
        run_ffmpeg(args, timeout=timeout, cancel_event=cancel_event)
    except FFmpegError as exc:
        raise TranscodeError(str(exc)) from exc

    if not os.path.isfile(output_path) or os.path.getsize(output_path) <= 0:
        raise TranscodeError(f"ffmpeg produced no output at {output_path}")
    return output_path
