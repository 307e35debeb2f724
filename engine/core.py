import json
import logging
import os
from dataclasses import dataclass

from config import settings
from engine.paths import EnginePaths, get_engine_paths, resolve_config_path, resolve_dir

_AUDIO_FORMATS = {"mp3", "m4a", "flac"}

_NUMERIC_FIELDS = {
    "fetch_timeout": (float, settings.DEFAULT_FETCH_TIMEOUT_SECONDS),
    "socket_timeout": (float, settings.DEFAULT_SOCKET_TIMEOUT_SECONDS),
    "thumbnail_timeout": (float, settings.DEFAULT_THUMBNAIL_TIMEOUT_SECONDS),
    "thumbnail_max_size_px": (int, settings.DEFAULT_THUMBNAIL_MAX_SIZE_PX),
    "thumbnail_max_attempts": (int, settings.DEFAULT_THUMBNAIL_MAX_ATTEMPTS),
    "transcode_timeout": (float, settings.DEFAULT_TRANSCODE_TIMEOUT_SECONDS),
    "max_concurrent_jobs": (int, settings.DEFAULT_MAX_CONCURRENT_JOBS),
    "max_request_bytes": (int, settings.DEFAULT_MAX_REQUEST_BYTES),
    "stale_work_dir_seconds": (int, settings.DEFAULT_STALE_WORK_DIR_SECONDS),
}


@dataclass(frozen=True)
class PipelineConfig:
    downloads_dir: str
    work_dir: str
    audio_format: str = settings.DEFAULT_AUDIO_FORMAT
    audio_bitrate: str = settings.DEFAULT_AUDIO_BITRATE
    fetch_timeout: float = settings.DEFAULT_FETCH_TIMEOUT_SECONDS
    socket_timeout: float = settings.DEFAULT_SOCKET_TIMEOUT_SECONDS
    thumbnail_timeout: float = settings.DEFAULT_THUMBNAIL_TIMEOUT_SECONDS
    thumbnail_max_size_px: int = settings.DEFAULT_THUMBNAIL_MAX_SIZE_PX
    thumbnail_max_attempts: int = settings.DEFAULT_THUMBNAIL_MAX_ATTEMPTS
    transcode_timeout: float = settings.DEFAULT_TRANSCODE_TIMEOUT_SECONDS
    max_concurrent_jobs: int = settings.DEFAULT_MAX_CONCURRENT_JOBS
    max_request_bytes: int = settings.DEFAULT_MAX_REQUEST_BYTES
    stale_work_dir_seconds: int = settings.DEFAULT_STALE_WORK_DIR_SECONDS
    cookie_file: str | None = None
    cors_origins: tuple = ()


def load_config(path):
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def load_config_if_present(path):
    if not path or not os.path.exists(path):
        logging.info("No config file at %s; using defaults", path)
        return {}
    return load_config(path)


def validate_config(config):
    errors = []
    if not isinstance(config, dict):
        return ["config must be a JSON object"]

    audio_format = config.get("audio_format")
    if audio_format is not None:
        if not isinstance(audio_format, str) or audio_format.strip().lower() not in _AUDIO_FORMATS:
            errors.append(f"audio_format must be one of {', '.join(sorted(_AUDIO_FORMATS))}")

    bitrate = config.get("audio_bitrate")
    if bitrate is not None:
        if not isinstance(bitrate, str) or not bitrate.rstrip("kK").isdigit():
            errors.append("audio_bitrate must look like '192k'")

    for name, (kind, _default) in _NUMERIC_FIELDS.items():
        value = config.get(name)
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            errors.append(f"{name} must be a number")
            continue
        if kind is int and not float(value).is_integer():
            errors.append(f"{name} must be an integer")
            continue
        if value <= 0:
            errors.append(f"{name} must be > 0")

    for name in ("downloads_dir", "work_dir", "cookie_file"):
        value = config.get(name)
        if value is not None and not isinstance(value, str):
            errors.append(f"{name} must be a string")

    origins = config.get("cors_origins")
    if origins is not None:
        if not isinstance(origins, list) or not all(isinstance(o, str) for o in origins):
            errors.append("cors_origins must be a list of strings")

    return errors


def build_pipeline_config(config, paths: EnginePaths) -> PipelineConfig:
    """Merge a validated raw config dict over defaults rooted at ``paths``."""
    config = config or {}
    values = {}
    for name, (kind, default) in _NUMERIC_FIELDS.items():
        raw = config.get(name)
        values[name] = kind(raw) if raw is not None else default

    audio_format = str(config.get("audio_format") or settings.DEFAULT_AUDIO_FORMAT).strip().lower()
    bitrate = str(config.get("audio_bitrate") or settings.DEFAULT_AUDIO_BITRATE).strip().lower()

    cookie_file = config.get("cookie_file") or os.environ.get("AUDIODROP_COOKIE_FILE") or None
    if cookie_file:
        cookie_file = resolve_dir(cookie_file, paths.config_dir)

    return PipelineConfig(
        downloads_dir=resolve_dir(config.get("downloads_dir"), paths.downloads_dir),
        work_dir=resolve_dir(config.get("work_dir"), paths.work_dir),
        audio_format=audio_format,
        audio_bitrate=bitrate,
        cookie_file=cookie_file,
        cors_origins=tuple(config.get("cors_origins") or ()),
        **values,
    )


def load_runtime_config(config_path=None, *, paths: EnginePaths | None = None) -> PipelineConfig:
    """Read the optional JSON config and return the effective pipeline config.

    Nothing is written to disk here; directories are created at app startup.
    """
    paths = paths or get_engine_paths()
    resolved = resolve_config_path(config_path or os.environ.get("AUDIODROP_CONFIG_PATH"))
    try:
        raw = load_config_if_present(resolved)
    except json.JSONDecodeError as exc:
        raise SystemExit(f"Invalid JSON in config {resolved}: {exc}") from exc
    errors = validate_config(raw)
    if errors:
        raise SystemExit(f"Invalid config {resolved}: " + "; ".join(errors))
    try:
        return build_pipeline_config(raw, paths)
    except ValueError as exc:
        raise SystemExit(f"Invalid config {resolved}: {exc}") from exc
