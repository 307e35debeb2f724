"""Filesystem locations for downloads, request work dirs, logs and config."""

import os
from dataclasses import dataclass
from pathlib import Path

_PROJECT_ROOT = Path(__file__).resolve().parent.parent


def _running_in_container():
    return os.path.exists("/.dockerenv") or os.path.isdir("/data")


def _env_path(name, default):
    raw = os.environ.get(name)
    return Path(raw or default).resolve()


if _running_in_container():
    _DATA_DEFAULT = Path("/data")
    _CONFIG_DEFAULT = Path("/config")
    _DOWNLOADS_DEFAULT = Path("/downloads")
    _LOG_DEFAULT = Path("/logs")
else:
    _DATA_DEFAULT = _PROJECT_ROOT / "data"
    _CONFIG_DEFAULT = _DATA_DEFAULT / "config"
    _DOWNLOADS_DEFAULT = _DATA_DEFAULT / "downloads"
    _LOG_DEFAULT = _DATA_DEFAULT / "logs"

DATA_DIR = _env_path("AUDIODROP_DATA_DIR", _DATA_DEFAULT)
CONFIG_DIR = _env_path("AUDIODROP_CONFIG_DIR", _CONFIG_DEFAULT)
DOWNLOADS_DIR = _env_path("AUDIODROP_DOWNLOADS_DIR", _DOWNLOADS_DEFAULT)
LOG_DIR = _env_path("AUDIODROP_LOG_DIR", _LOG_DEFAULT)
# Keep on the same volume as DOWNLOADS_DIR so committing a file is a rename.
WORK_DIR = _env_path("AUDIODROP_WORK_DIR", DATA_DIR / "tmp" / "jobs")


@dataclass(frozen=True)
class EnginePaths:
    log_dir: str
    config_dir: str
    downloads_dir: str
    work_dir: str


def ensure_dir(path):
    if path:
        os.makedirs(path, exist_ok=True)


def is_within_base(path, base_dir):
    real = os.path.realpath(path)
    base = os.path.realpath(base_dir)
    return os.path.commonpath([real, base]) == base


def _resolve_under(path, base_dir):
    if os.path.isabs(path):
        resolved = os.path.abspath(path)
    else:
        resolved = os.path.abspath(os.path.join(base_dir, path))
    if not is_within_base(resolved, base_dir):
        raise ValueError(f"Path must be within base directory: {base_dir}")
    return resolved


def resolve_config_path(path):
    return _resolve_under(path or "config.json", CONFIG_DIR)


def resolve_dir(path, base_dir):
    """Resolve ``path`` against ``base_dir``; an empty value means the base itself."""
    if not path:
        return str(base_dir)
    return _resolve_under(path, base_dir)


def get_engine_paths():
    return EnginePaths(
        log_dir=str(LOG_DIR),
        config_dir=str(CONFIG_DIR),
        downloads_dir=str(DOWNLOADS_DIR),
        work_dir=str(WORK_DIR),
    )
