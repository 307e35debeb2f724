import io
import logging

from PIL import Image
import requests

from config.settings import DEFAULT_THUMBNAIL_MAX_ATTEMPTS, DEFAULT_THUMBNAIL_MAX_SIZE_PX

_LOG = logging.getLogger(__name__)


def _normalize_artwork_blob(data, *, context):
    """Re-encode ``data`` as a baseline RGB JPEG, downscaled to ``max_size_px``."""
    if not data:
        return None
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
        if image.mode != "RGB":
            image = image.convert("RGB")
        max_size_px = context.get("max_size_px")
        if max_size_px:
            image.thumbnail((max_size_px, max_size_px))
        output = io.BytesIO()
        image.save(output, format="JPEG", quality=90, progressive=False, optimize=False)
        return {"data": output.getvalue(), "mime": "image/jpeg"}
    except Exception:
        _LOG.warning("Artwork processing failed for %s", context.get("label"), exc_info=True)
        return None


def fetch_artwork_from_url(artwork_url, max_size_px=DEFAULT_THUMBNAIL_MAX_SIZE_PX, timeout=10):
    url = str(artwork_url or "").strip()
    if not url:
        return None
    try:
        resp = requests.get(url, timeout=timeout)
    except Exception:
        _LOG.warning("Artwork URL download failed for %s", url, exc_info=True)
        return None
    if not resp.ok or not resp.content:
        _LOG.warning("Artwork URL returned status=%s for %s", resp.status_code, url)
        return None
    return _normalize_artwork_blob(
        resp.content,
        context={"label": url, "max_size_px": max_size_px},
    )


def fetch_best_thumbnail(
    candidates,
    *,
    max_size_px=DEFAULT_THUMBNAIL_MAX_SIZE_PX,
    timeout=10,
    max_attempts=DEFAULT_THUMBNAIL_MAX_ATTEMPTS,
):
    """Try thumbnail candidates from highest resolution down; never raises."""
    attempts = 0
    for candidate in reversed(tuple(candidates or ())):
        if attempts >= max_attempts:
            break
        attempts += 1
        url = getattr(candidate, "url", candidate)
        artwork = fetch_artwork_from_url(url, max_size_px=max_size_px, timeout=timeout)
        if artwork:
            return artwork
    return None
