"""Final muxing pass: text tags and embedded cover art.

This is the only step that writes tags; the transcoder strips source
metadata so nothing here is overwritten by an earlier or later pass.
"""

from __future__ import annotations

import logging
import os

from engine.errors import MuxError
from media.ffmpeg import FFmpegError, run_ffmpeg
from media.transcode import get_audio_target
from metadata.types import TagSet

_LOG = logging.getLogger(__name__)


def _add_common_metadata(args: list[str], tags: TagSet) -> None:
    for key, value in tags.escaped().items():
        args.extend(["-metadata", f"{key}={value}"])


def _add_container_options(args: list[str], audio_format: str) -> None:
    target = get_audio_target(audio_format)
    if target.muxer == "mp3":
        # ID3v2.4 is the revision that stores text frames as UTF-8.
        args.extend(["-id3v2_version", "4", "-write_id3v1", "0"])
    args.extend(["-f", target.muxer])


def build_mux_args(audio_path, output_path, *, tags: TagSet, thumbnail_path=None, audio_format="mp3"):
    args = ["-i", audio_path]
    if thumbnail_path:
        args.extend(["-i", thumbnail_path])
        args.extend(["-map", "0:a", "-map", "1:v"])
        args.extend(["-c:a", "copy", "-c:v", "mjpeg"])
        args.extend(["-disposition:v", "attached_pic"])
        args.extend(["-metadata:s:v", "title=Album cover", "-metadata:s:v", "comment=Cover (front)"])
    else:
        args.extend(["-map", "0:a", "-c", "copy"])
    _add_common_metadata(args, tags)
    _add_container_options(args, audio_format)
    args.append(output_path)
    return args


def write_tags_and_artwork(
    audio_path,
    output_path,
    *,
    tags: TagSet | None = None,
    thumbnail_path=None,
    audio_format="mp3",
    timeout=None,
    cancel_event=None,
) -> bool:
    """Produce ``output_path`` from ``audio_path`` with tags and optional cover.

    When there is neither a thumbnail nor a non-blank tag the file is moved
    into place unchanged and ``False`` is returned; otherwise ffmpeg runs and
    ``True`` is returned.

    Raises:
        MuxError: if ffmpeg fails or produces no output.
    """
    tags = tags or TagSet()
    if thumbnail_path and not os.path.isfile(thumbnail_path):
        _LOG.warning("Thumbnail %s vanished before muxing; continuing without artwork", thumbnail_path)
        thumbnail_path = None

    if not thumbnail_path and tags.is_empty():
        try:
            os.replace(audio_path, output_path)
        except OSError as exc:
            raise MuxError(f"move {audio_path} -> {output_path} failed: {exc}") from exc
        return False

    args = build_mux_args(
        audio_path,
        output_path,
        tags=tags,
        thumbnail_path=thumbnail_path,
        audio_format=audio_format,
    )
    try:
        run_ffmpeg(args, timeout=timeout, cancel_event=cancel_event)
    except FFmpegError as exc:
        raise MuxError(str(exc)) from exc

    if not os.path.isfile(output_path) or os.path.getsize(output_path) <= 0:
        raise MuxError(f"ffmpeg produced no output at {output_path}")
    _LOG.info(
        "Metadata embedded into %s (artwork=%s tags=%s)",
        os.path.basename(output_path),
        bool(thumbnail_path),
        ",".join(key for key, _ in tags.items()) or "-",
    )
    return True
