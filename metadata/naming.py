"""Filename helpers used when naming finished audio files."""

from __future__ import annotations

import re
import unicodedata
import uuid
from typing import Any

_INVALID_FS_CHARS_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f\x7f]')
_MULTISPACE_RE = re.compile(r"\s+")
_EDGE_CHARS = " ._"


def strip_diacritics(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def generated_name(prefix: str = "audio") -> str:
    return f"{prefix}_{uuid.uuid4().hex[:8]}"


def sanitize_filename(text: Any, *, fallback: str | None = None, maxlen: int = 180) -> str:
    """Return a filesystem-safe name for ``text``.

    Diacritics are stripped, reserved characters removed and whitespace runs
    collapsed to a single underscore. When nothing usable remains the
    sanitized ``fallback`` is used, then a generated ``audio_<hex>`` id.
    """
    sanitized = strip_diacritics(str(text or ""))
    sanitized = _INVALID_FS_CHARS_RE.sub("", sanitized).strip()
    sanitized = _MULTISPACE_RE.sub("_", sanitized)
    sanitized = sanitized[:maxlen].strip(_EDGE_CHARS)
    if sanitized:
        return sanitized
    if fallback:
        return sanitize_filename(fallback, maxlen=maxlen)
    return generated_name()


def build_audio_filename(title: Any, ext: str, *, fallback: str | None = None) -> str:
    stem = sanitize_filename(title, fallback=fallback)
    ext = str(ext or "").lstrip(".")
    return f"{stem}.{ext}" if ext else stem
