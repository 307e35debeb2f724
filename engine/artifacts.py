"""Per-request temporary files and the final artifact they turn into."""

from __future__ import annotations

import logging
import os
import shutil
import time
from uuid import uuid4

from engine.errors import StorageError
from engine.paths import ensure_dir

logger = logging.getLogger(__name__)


def atomic_move(src, dst):
    try:
        os.replace(src, dst)
    except OSError:
        shutil.copy2(src, dst)
        os.remove(src)


def reserve_output_path(directory, filename):
    """Claim a free path for ``filename`` inside ``directory``.

    The path is created empty with an exclusive open, so two requests that
    sanitize to the same name get ``Name.mp3`` and ``Name_2.mp3`` instead
    of overwriting each other.
    """
    stem, ext = os.path.splitext(filename)
    attempt = 1
    while True:
        candidate_name = filename if attempt == 1 else f"{stem}_{attempt}{ext}"
        candidate = os.path.join(directory, candidate_name)
        try:
            fd = os.open(candidate, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            attempt += 1
            continue
        os.close(fd)
        return candidate


class JobArtifacts:
    """Filesystem paths touched by one request.

    Every temporary lives in ``<work_root>/<request_id>/`` and is removed on
    exit from the ``with`` block, whatever the outcome. A reserved final path
    survives only if :meth:`commit` ran.
    """

    def __init__(self, work_root, downloads_dir, *, request_id=None):
        self.request_id = request_id or uuid4().hex
        self.work_root = str(work_root)
        self.downloads_dir = str(downloads_dir)
        self.work_dir = os.path.join(self.work_root, self.request_id)
        self.final_path = None
        self._committed = False

    @property
    def audio_stem(self):
        return "source"

    def temp_path(self, name):
        return os.path.join(self.work_dir, name)

    def transcoded_path(self, ext):
        return self.temp_path(f"transcoded.{ext}")

    def tagged_path(self, ext):
        return self.temp_path(f"tagged.{ext}")

    @property
    def thumbnail_path(self):
        return self.temp_path("thumbnail.jpg")

    def __enter__(self):
        try:
            ensure_dir(self.downloads_dir)
            os.makedirs(self.work_dir)
        except OSError as exc:
            raise StorageError(f"cannot create work dir {self.work_dir}: {exc}") from exc
        return self

    def __exit__(self, exc_type, exc, tb):
        self.cleanup()
        return False

    def write_thumbnail(self, data):
        with open(self.thumbnail_path, "wb") as handle:
            handle.write(data)
        return self.thumbnail_path

    def commit(self, source_path, filename):
        """Move ``source_path`` to a reserved path for ``filename`` in the downloads dir."""
        try:
            self.final_path = reserve_output_path(self.downloads_dir, filename)
            atomic_move(source_path, self.final_path)
        except OSError as exc:
            raise StorageError(f"cannot store {filename}: {exc}") from exc
        self._committed = True
        return self.final_path

    def cleanup(self):
        if self.final_path and not self._committed:
            try:
                os.remove(self.final_path)
            except FileNotFoundError:
                pass
            except OSError:
                logger.warning("Failed to remove reserved output %s", self.final_path, exc_info=True)
        _remove_tree(self.work_dir)


def _remove_tree(path):
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        pass
    except OSError:
        logger.warning("Failed to remove temporary dir %s", path, exc_info=True)


def sweep_stale_work_dirs(work_root, max_age_seconds, *, now=None):
    """Remove request work dirs older than ``max_age_seconds``.

    Returns the number of directories removed. Covers work dirs left behind
    when the process died mid-request.
    """
    if not os.path.isdir(work_root):
        return 0
    now = time.time() if now is None else now
    removed = 0
    for entry in os.scandir(work_root):
        if not entry.is_dir(follow_symlinks=False):
            continue
        try:
            age = now - entry.stat(follow_symlinks=False).st_mtime
        except FileNotFoundError:
            continue
        if age < max_age_seconds:
            continue
        _remove_tree(entry.path)
        removed += 1
    if removed:
        logger.info("Removed %s stale work dir(s) from %s", removed, work_root)
    return removed
