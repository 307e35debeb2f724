from .naming import build_audio_filename, sanitize_filename
from .types import MediaMetadata, TagSet, ThumbnailCandidate

__all__ = [
    "MediaMetadata",
    "TagSet",
    "ThumbnailCandidate",
    "build_audio_filename",
    "sanitize_filename",
]
