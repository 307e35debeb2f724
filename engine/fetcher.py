import logging
import os
import time

from yt_dlp import YoutubeDL
from yt_dlp.utils import DownloadCancelled, DownloadError, ExtractorError

from engine.errors import FetchError, JobCancelledError
from engine.log import YtdlpLogger, log_event
from metadata.types import MediaMetadata

logger = logging.getLogger(__name__)

# Prefer audio-only formats first; fall back to any best format only if needed.
_FORMAT_AUDIO = "bestaudio/best"
# Keys a previous format selection leaves on the info dict. A stale
# requested_formats pair makes yt-dlp download and merge video+audio.
_SELECTION_KEYS = ("requested_formats", "requested_downloads", "format_id", "format", "filepath", "_filename")


class _DownloadAborted(DownloadCancelled):
    def __init__(self, reason):
        super().__init__(reason)
        self.reason = reason


class MediaFetcher:
    """Metadata lookup and best-audio download through the yt-dlp Python API."""

    def __init__(self, *, socket_timeout=20.0, cookie_file=None, extra_opts=None):
        self.socket_timeout = socket_timeout
        self.cookie_file = cookie_file
        self.extra_opts = dict(extra_opts or {})

    def _base_opts(self):
        opts = {
            "quiet": True,
            "no_warnings": True,
            "noprogress": True,
            "noplaylist": True,
            "socket_timeout": self.socket_timeout,
            "logger": YtdlpLogger(),
            # One attempt per request; failures surface to the caller.
            "retries": 0,
            "fragment_retries": 0,
        }
        if self.cookie_file:
            opts["cookiefile"] = self.cookie_file
        opts.update(self.extra_opts)
        return opts

    def _resolve_opts(self):
        opts = self._base_opts()
        opts["skip_download"] = True
        opts["format"] = _FORMAT_AUDIO
        return opts

    def resolve(self, source):
        """Run the single metadata query for ``source``.

        Returns ``(MediaMetadata, info)``; ``info`` is handed back to
        :meth:`download_audio` so the provider is not queried twice.
        """
        try:
            with YoutubeDL(self._resolve_opts()) as ydl:
                info = ydl.extract_info(source.url, download=False)
        except (DownloadError, ExtractorError) as exc:
            raise FetchError(f"metadata lookup failed for {source.url}: {exc}") from exc
        if not isinstance(info, dict):
            raise FetchError(f"metadata lookup returned nothing for {source.url}")
        if info.get("_type") == "playlist":
            raise FetchError(f"playlist returned for single-video url {source.url}")
        info.setdefault("id", source.video_id)
        meta = MediaMetadata.from_info(info, fallback_url=source.url)
        log_event(
            logging.INFO,
            "metadata_resolved",
            url=source.url,
            video_id=meta.video_id,
            title=meta.title,
            thumbnails=len(meta.thumbnails),
            audio_formats=len(meta.audio_qualities),
        )
        return meta, info

    def download_audio(self, info, work_dir, stem, *, deadline=None, cancel_event=None):
        """Download the best audio track for ``info`` into ``work_dir``.

        Returns only after yt-dlp has finished writing and renamed the file;
        partial ``.part`` files are left for the caller's cleanup.
        """

        def _guard(_progress):
            if cancel_event is not None and cancel_event.is_set():
                raise _DownloadAborted("cancelled")
            if deadline is not None and time.monotonic() > deadline:
                raise _DownloadAborted("timeout")

        opts = self._base_opts()
        opts.update(
            {
                "format": _FORMAT_AUDIO,
                "outtmpl": os.path.join(work_dir, f"{stem}.%(ext)s"),
                "paths": {"home": work_dir, "temp": work_dir},
                "progress_hooks": [_guard],
                "writethumbnail": False,
                "postprocessors": [],
            }
        )
        try:
            with YoutubeDL(opts) as ydl:
                result = ydl.process_ie_result(_without_selection(info), download=True)
                filename = _downloaded_filename(ydl, result)
        except _DownloadAborted as exc:
            if exc.reason == "cancelled":
                raise JobCancelledError("audio download cancelled") from exc
            raise FetchError("audio download timed out") from exc
        except DownloadCancelled as exc:
            raise JobCancelledError("audio download cancelled") from exc
        except (DownloadError, ExtractorError) as exc:
            raise FetchError(f"audio download failed: {exc}") from exc
        except OSError as exc:
            raise FetchError(f"audio write failed: {exc}") from exc

        if not filename or not os.path.isfile(filename) or os.path.getsize(filename) <= 0:
            raise FetchError(f"audio download produced no file for {info.get('id')}")
        return filename


def _without_selection(info):
    return {key: value for key, value in info.items() if key not in _SELECTION_KEYS}

def _downloaded_filename(ydl, result):
    if not isinstance(result, dict):
        return None
    for entry in result.get("requested_downloads") or []:
        path = entry.get("filepath") or entry.get("_filename")
        if path:
            return path
    path = result.get("filepath") or result.get("_filename")
    if path:
        return path
    return ydl.prepare_filename(result)
