"""Application settings constants."""

from __future__ import annotations

APP_NAME = "Audiodrop API"

# Target container written to the downloads directory.
DEFAULT_AUDIO_FORMAT = "mp3"

# Encoder bitrate used when the source codec differs from the target codec.
DEFAULT_AUDIO_BITRATE = "192k"

# yt-dlp socket timeout and overall deadline for one audio download.
DEFAULT_SOCKET_TIMEOUT_SECONDS = 20.0
DEFAULT_FETCH_TIMEOUT_SECONDS = 600.0

# Thumbnails are optional; the pipeline stops waiting after this long.
DEFAULT_THUMBNAIL_TIMEOUT_SECONDS = 15.0
DEFAULT_THUMBNAIL_MAX_SIZE_PX = 1200
DEFAULT_THUMBNAIL_MAX_ATTEMPTS = 3

# Upper bound for each ffmpeg/ffprobe invocation.
DEFAULT_TRANSCODE_TIMEOUT_SECONDS = 900.0
PROBE_TIMEOUT_SECONDS = 15.0

DEFAULT_MAX_CONCURRENT_JOBS = 4
DEFAULT_MAX_REQUEST_BYTES = 16 * 1024

# Work dirs left behind by a crashed process are removed after this age.
DEFAULT_STALE_WORK_DIR_SECONDS = 6 * 60 * 60
STALE_SWEEP_INTERVAL_MINUTES = 30

# Tag value limits; MP4 atoms and ID3 frames get picky beyond these.
TAG_VALUE_MAX_CHARS = 256
TAG_COMMENT_MAX_CHARS = 512
