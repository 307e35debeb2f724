"""Structured metadata types for fetched media and the tags written to it."""

from __future__ import annotations

import re
from dataclasses import dataclass, fields, replace
from typing import Any

from config.settings import TAG_COMMENT_MAX_CHARS, TAG_VALUE_MAX_CHARS

# ASCII double quote plus the typographic variants that titles tend to carry.
_QUOTE_CHARS_RE = re.compile(r"[\"“”„‟″]")
_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]")
_MULTISPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class ThumbnailCandidate:
    url: str
    width: int | None = None
    height: int | None = None


@dataclass(frozen=True)
class MediaMetadata:
    """Read-only description of one remote media item."""

    video_id: str
    title: str
    author: str
    # Ordered by resolution, last = highest.
    thumbnails: tuple[ThumbnailCandidate, ...] = ()
    webpage_url: str | None = None
    album: str | None = None
    genre: str | None = None
    duration: float | None = None
    # Audio-bearing formats offered by the provider, e.g. "251:opus@160k".
    audio_qualities: tuple[str, ...] = ()

    @property
    def best_thumbnail(self) -> ThumbnailCandidate | None:
        return self.thumbnails[-1] if self.thumbnails else None

    @classmethod
    def from_info(cls, info: dict[str, Any], *, fallback_url: str | None = None) -> "MediaMetadata":
        """Build metadata from a yt-dlp info dict."""
        categories = info.get("categories") or []
        genre = info.get("genre") or (categories[0] if categories else None)
        duration = info.get("duration")
        return cls(
            video_id=str(info.get("id") or ""),
            title=str(info.get("track") or info.get("title") or "").strip(),
            author=str(
                info.get("artist") or info.get("creator") or info.get("channel") or info.get("uploader") or ""
            ).strip(),
            thumbnails=_thumbnail_candidates(info),
            webpage_url=info.get("webpage_url") or fallback_url,
            album=info.get("album") or None,
            genre=genre or None,
            duration=float(duration) if isinstance(duration, (int, float)) else None,
            audio_qualities=_audio_qualities(info),
        )


def _audio_qualities(info: dict[str, Any]) -> tuple[str, ...]:
    qualities = []
    for fmt in info.get("formats") or []:
        if not isinstance(fmt, dict) or fmt.get("acodec") in (None, "none"):
            continue
        label = f"{fmt.get('format_id')}:{fmt['acodec']}"
        if isinstance(fmt.get("abr"), (int, float)):
            label = f"{label}@{fmt['abr']:.0f}k"
        qualities.append(label)
    return tuple(qualities)


def _thumbnail_candidates(info: dict[str, Any]) -> tuple[ThumbnailCandidate, ...]:
    # yt-dlp sorts thumbnails worst -> best (preference, then dimensions).
    ordered = []
    for entry in info.get("thumbnails") or []:
        if not isinstance(entry, dict) or not entry.get("url"):
            continue
        width = entry.get("width") if isinstance(entry.get("width"), int) else None
        height = entry.get("height") if isinstance(entry.get("height"), int) else None
        ordered.append(ThumbnailCandidate(entry["url"], width, height))
    single = info.get("thumbnail")
    if single and all(c.url != single for c in ordered):
        ordered.append(ThumbnailCandidate(single))
    return tuple(ordered)


@dataclass(frozen=True)
class TagSet:
    """Text tags for the final audio file. Blank fields are not written."""

    title: str = ""
    artist: str = ""
    album: str = ""
    genre: str = ""
    comment: str = ""

    @classmethod
    def from_metadata(cls, meta: MediaMetadata) -> "TagSet":
        comment = f"YouTubeID={meta.video_id}"
        if meta.webpage_url:
            comment = f"{comment} URL={meta.webpage_url}"
        return cls(
            title=meta.title,
            artist=meta.author,
            album=meta.album or meta.title,
            genre=meta.genre or "",
            comment=comment,
        )

    def is_empty(self) -> bool:
        return not any(getattr(self, f.name) for f in fields(self))

    def escaped(self) -> "TagSet":
        """Return a copy safe to pass as ``-metadata key=value`` arguments."""
        updates = {}
        for f in fields(self):
            limit = TAG_COMMENT_MAX_CHARS if f.name == "comment" else TAG_VALUE_MAX_CHARS
            updates[f.name] = escape_tag_value(getattr(self, f.name), limit=limit)
        return replace(self, **updates)

    def items(self) -> list[tuple[str, str]]:
        return [(f.name, getattr(self, f.name)) for f in fields(self) if getattr(self, f.name)]


def escape_tag_value(value: Any, *, limit: int = TAG_VALUE_MAX_CHARS) -> str:
    text = _QUOTE_CHARS_RE.sub("", str(value or ""))
    text = _CONTROL_RE.sub(" ", text)
    text = _MULTISPACE_RE.sub(" ", text).strip()
    if len(text) > limit:
        text = text[:limit].rstrip()
    return text
