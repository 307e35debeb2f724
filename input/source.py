"""Source URL validation for the provider accepted by the download endpoints."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qs, urlparse

from engine.errors import InvalidSourceError

_VIDEO_ID_RE = re.compile(r"^[A-Za-z0-9_-]{11}$")
_YOUTUBE_HOSTS = {
    "youtube.com",
    "www.youtube.com",
    "m.youtube.com",
    "music.youtube.com",
    "gaming.youtube.com",
    "youtube-nocookie.com",
    "www.youtube-nocookie.com",
}
_SHORT_HOSTS = {"youtu.be", "www.youtu.be"}
_PATH_PREFIXES = ("embed", "shorts", "live", "v", "e")


@dataclass(frozen=True)
class SourceReference:
    url: str
    video_id: str


def parse_source_url(raw: object) -> SourceReference:
    """Validate ``raw`` against the YouTube URL grammar.

    Accepts watch URLs (``/watch?v=``), short links (``youtu.be/<id>``) and
    the ``/embed/``, ``/shorts/``, ``/live/`` and ``/v/`` path forms on the
    known YouTube hosts. No network calls are made.

    Raises:
        InvalidSourceError: if the input is not a string or does not identify
            a single video.
    """
    if not isinstance(raw, str) or not raw.strip():
        raise InvalidSourceError("url is missing or not a string")
    url = raw.strip()
    video_id = extract_video_id(url)
    if not video_id:
        raise InvalidSourceError(f"unsupported source url: {url!r}")
    return SourceReference(url=url, video_id=video_id)


def extract_video_id(url: str) -> Optional[str]:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        return None
    host = (parsed.hostname or "").lower()
    segments = [segment for segment in (parsed.path or "").split("/") if segment]

    if host in _SHORT_HOSTS:
        candidate = segments[0] if segments else None
        return _clean_identifier(candidate)

    if host not in _YOUTUBE_HOSTS:
        return None

    if segments[:1] == ["watch"]:
        values = parse_qs(parsed.query).get("v")
        return _clean_identifier(values[0] if values else None)

    if len(segments) >= 2 and segments[0] in _PATH_PREFIXES:
        return _clean_identifier(segments[1])
    return None


def _clean_identifier(value: Optional[str]) -> Optional[str]:
    cleaned = (value or "").split("?", 1)[0].strip().strip("/")
    if _VIDEO_ID_RE.match(cleaned):
        return cleaned
    return None
