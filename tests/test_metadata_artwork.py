from __future__ import annotations

import io

import requests
from PIL import Image

from metadata import artwork
from metadata.artwork import fetch_artwork_from_url, fetch_best_thumbnail
from metadata.types import ThumbnailCandidate


class _FakeResponse:
    def __init__(self, content=b"", status_code=200):
        self.content = content
        self.status_code = status_code

    @property
    def ok(self):
        return 200 <= self.status_code < 400


def _png_bytes(size=(64, 32), mode="RGBA") -> bytes:
    buffer = io.BytesIO()
    Image.new(mode, size, (255, 0, 0, 128) if mode == "RGBA" else 0).save(buffer, format="PNG")
    return buffer.getvalue()


def test_fetch_artwork_from_url_reencodes_as_rgb_jpeg(monkeypatch) -> None:
    monkeypatch.setattr(artwork.requests, "get", lambda url, timeout: _FakeResponse(_png_bytes((400, 200))))

    result = fetch_artwork_from_url("https://i.ytimg.com/vi/x/maxres.png", max_size_px=100)

    assert result["mime"] == "image/jpeg"
    image = Image.open(io.BytesIO(result["data"]))
    assert image.format == "JPEG"
    assert image.mode == "RGB"
    assert max(image.size) == 100


def test_fetch_artwork_from_url_returns_none_on_http_error(monkeypatch) -> None:
    monkeypatch.setattr(artwork.requests, "get", lambda url, timeout: _FakeResponse(b"", status_code=404))

    assert fetch_artwork_from_url("https://i.ytimg.com/vi/x/missing.jpg") is None


def test_fetch_artwork_from_url_returns_none_on_network_error(monkeypatch) -> None:
    def _raise(_url, timeout):
        raise requests.ConnectionError("connection reset")

    monkeypatch.setattr(artwork.requests, "get", _raise)

    assert fetch_artwork_from_url("https://i.ytimg.com/vi/x/hq.jpg") is None


def test_fetch_artwork_from_url_returns_none_for_non_image(monkeypatch) -> None:
    monkeypatch.setattr(artwork.requests, "get", lambda url, timeout: _FakeResponse(b"<html>nope</html>"))

    assert fetch_artwork_from_url("https://i.ytimg.com/vi/x/hq.jpg") is None


def test_fetch_best_thumbnail_prefers_highest_resolution_and_falls_back(monkeypatch) -> None:
    requested = []

    def _fake_get(url, timeout):
        requested.append(url)
        if url.endswith("maxres.jpg"):
            return _FakeResponse(b"", status_code=404)
        return _FakeResponse(_png_bytes())

    monkeypatch.setattr(artwork.requests, "get", _fake_get)
    candidates = (
        ThumbnailCandidate("https://i.ytimg.com/vi/x/default.jpg", 120, 90),
        ThumbnailCandidate("https://i.ytimg.com/vi/x/hq.jpg", 480, 360),
        ThumbnailCandidate("https://i.ytimg.com/vi/x/maxres.jpg", 1280, 720),
    )

    result = fetch_best_thumbnail(candidates, timeout=1)

    assert result is not None
    assert requested == [
        "https://i.ytimg.com/vi/x/maxres.jpg",
        "https://i.ytimg.com/vi/x/hq.jpg",
    ]


def test_fetch_best_thumbnail_stops_after_max_attempts(monkeypatch) -> None:
    requested = []

    def _fake_get(url, timeout):
        requested.append(url)
        return _FakeResponse(b"", status_code=500)

    monkeypatch.setattr(artwork.requests, "get", _fake_get)
    candidates = [ThumbnailCandidate(f"https://i.ytimg.com/vi/x/{i}.jpg") for i in range(5)]

    assert fetch_best_thumbnail(candidates, max_attempts=2) is None
    assert len(requested) == 2


def test_fetch_best_thumbnail_handles_no_candidates() -> None:
    assert fetch_best_thumbnail(()) is None
