from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest
from yt_dlp import YoutubeDL
from yt_dlp.utils import DownloadError

from engine import fetcher as fetcher_module
from engine.errors import FetchError, JobCancelledError
from engine.fetcher import MediaFetcher
from input.source import parse_source_url
from metadata.types import MediaMetadata

_INFO = {
    "id": "dQw4w9WgXcQ",
    "title": "Never Gonna Give You Up",
    "uploader": "RickAstleyVEVO",
    "channel": "Rick Astley",
    "categories": ["Music"],
    "webpage_url": "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
    "thumbnails": [
        {"url": "https://i.ytimg.com/vi/dQw4w9WgXcQ/default.jpg", "width": 120, "height": 90},
        {"url": "https://i.ytimg.com/vi/dQw4w9WgXcQ/maxresdefault.jpg", "width": 1280, "height": 720},
    ],
    "thumbnail": "https://i.ytimg.com/vi/dQw4w9WgXcQ/maxresdefault.jpg",
    "duration": 213,
    "formats": [
        {"format_id": "137", "acodec": "none", "vcodec": "avc1"},
        {"format_id": "140", "acodec": "mp4a.40.2", "abr": 129.5},
        {"format_id": "251", "acodec": "opus", "abr": 160},
    ],
}


class _FakeYoutubeDL:
    instances: list = []
    info = _INFO
    extract_error = None

    def __init__(self, opts):
        self.opts = opts
        _FakeYoutubeDL.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *_exc):
        return False

    def extract_info(self, url, download=False):
        if self.extract_error is not None:
            raise self.extract_error
        return dict(self.info)

    def process_ie_result(self, info, download=True):
        for hook in self.opts.get("progress_hooks", []):
            hook({"status": "downloading"})
        path = Path(self.opts["outtmpl"].replace("%(ext)s", "webm"))
        path.write_bytes(b"opus-audio")
        return {**info, "requested_downloads": [{"filepath": str(path)}]}


@pytest.fixture
def fake_ydl(monkeypatch):
    _FakeYoutubeDL.instances = []
    _FakeYoutubeDL.info = _INFO
    _FakeYoutubeDL.extract_error = None
    monkeypatch.setattr(fetcher_module, "YoutubeDL", _FakeYoutubeDL)
    return _FakeYoutubeDL


def test_media_metadata_from_info_prefers_channel_and_category() -> None:
    meta = MediaMetadata.from_info(_INFO)

    assert meta.author == "Rick Astley"
    assert meta.genre == "Music"
    assert meta.duration == 213.0
    assert len(meta.thumbnails) == 2
    assert meta.best_thumbnail.url.endswith("maxresdefault.jpg")
    assert meta.audio_qualities == ("140:mp4a.40.2@130k", "251:opus@160k")


def test_resolve_returns_metadata_and_info(fake_ydl) -> None:
    source = parse_source_url("https://youtu.be/dQw4w9WgXcQ")

    meta, info = MediaFetcher(socket_timeout=5, cookie_file="/config/cookies.txt").resolve(source)

    assert meta.title == "Never Gonna Give You Up"
    assert info["id"] == "dQw4w9WgXcQ"
    opts = fake_ydl.instances[0].opts
    assert opts["noplaylist"] is True
    assert opts["socket_timeout"] == 5
    assert opts["cookiefile"] == "/config/cookies.txt"


def test_resolve_wraps_ytdlp_errors(fake_ydl) -> None:
    fake_ydl.extract_error = DownloadError("Video unavailable")
    source = parse_source_url("https://youtu.be/dQw4w9WgXcQ")

    with pytest.raises(FetchError) as excinfo:
        MediaFetcher().resolve(source)

    assert excinfo.value.message == "Failed to fetch audio"


def test_resolve_rejects_playlist_results(fake_ydl) -> None:
    fake_ydl.info = {"_type": "playlist", "id": "PL123", "entries": []}
    source = parse_source_url("https://youtu.be/dQw4w9WgXcQ")

    with pytest.raises(FetchError):
        MediaFetcher().resolve(source)


def test_download_audio_writes_into_work_dir(fake_ydl, tmp_path: Path) -> None:
    path = MediaFetcher().download_audio(dict(_INFO), str(tmp_path), "source")

    assert path == str(tmp_path / "source.webm")
    opts = fake_ydl.instances[0].opts
    assert opts["format"] == "bestaudio/best"
    assert opts["paths"] == {"home": str(tmp_path), "temp": str(tmp_path)}


def test_download_audio_maps_cancel_to_job_cancelled(fake_ydl, tmp_path: Path) -> None:
    cancel_event = threading.Event()
    cancel_event.set()

    with pytest.raises(JobCancelledError):
        MediaFetcher().download_audio(dict(_INFO), str(tmp_path), "source", cancel_event=cancel_event)


def test_download_audio_maps_deadline_to_fetch_error(fake_ydl, tmp_path: Path) -> None:
    with pytest.raises(FetchError, match="timed out"):
        MediaFetcher().download_audio(dict(_INFO), str(tmp_path), "source", deadline=time.monotonic() - 1)


def _extracted_info() -> dict:
    return {
        "id": "dQw4w9WgXcQ",
        "title": "Never Gonna Give You Up",
        "extractor": "youtube",
        "extractor_key": "Youtube",
        "webpage_url": "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
        "duration": 213,
        "formats": [
            {
                "format_id": "140",
                "url": "https://media.example/140",
                "ext": "m4a",
                "protocol": "https",
                "acodec": "mp4a.40.2",
                "vcodec": "none",
                "abr": 129.5,
            },
            {
                "format_id": "251",
                "url": "https://media.example/251",
                "ext": "webm",
                "protocol": "https",
                "acodec": "opus",
                "vcodec": "none",
                "abr": 160,
            },
            {
                "format_id": "137",
                "url": "https://media.example/137",
                "ext": "mp4",
                "protocol": "https",
                "acodec": "none",
                "vcodec": "avc1.640028",
                "width": 1920,
                "height": 1080,
            },
        ],
    }


@pytest.fixture
def recorded_downloads(monkeypatch):
    """Run yt-dlp's real format selection; only the transfer step is replaced."""
    recorded = []

    def _process_info(self, info_dict):
        recorded.append(dict(info_dict))
        path = Path(self.prepare_filename(info_dict))
        path.write_bytes(b"audio-bytes")
        info_dict["filepath"] = str(path)

    monkeypatch.setattr(YoutubeDL, "process_info", _process_info)
    return recorded


@pytest.mark.parametrize("resolved_with", [None, "137+251"])
def test_download_audio_selects_audio_only_format(recorded_downloads, tmp_path: Path, resolved_with) -> None:
    # A video+audio pair chosen at resolve time must not leak into the download.
    opts = MediaFetcher()._resolve_opts()
    if resolved_with:
        opts["format"] = resolved_with
    with YoutubeDL(opts) as ydl:
        info = ydl.process_ie_result(_extracted_info(), download=False)

    path = MediaFetcher().download_audio(info, str(tmp_path), "source")

    assert len(recorded_downloads) == 1
    downloaded = recorded_downloads[0]
    assert downloaded["vcodec"] == "none"
    assert downloaded["format_id"] in {"140", "251"}
    assert "requested_formats" not in downloaded
    assert Path(path).parent == tmp_path
    assert Path(path).read_bytes() == b"audio-bytes"


def test_resolve_uses_audio_only_selection() -> None:
    opts = MediaFetcher()._resolve_opts()

    assert opts["format"] == "bestaudio/best"
    assert opts["skip_download"] is True
