#!/usr/bin/env python3
import asyncio
import base64
import binascii
import hmac
import logging
import mimetypes
import os
import threading
from typing import Any, Optional
from urllib.parse import quote

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from fastapi import APIRouter, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from pydantic import BaseModel

from config.settings import APP_NAME, STALE_SWEEP_INTERVAL_MINUTES
from engine.artifacts import sweep_stale_work_dirs
from engine.core import PipelineConfig, load_runtime_config
from engine.errors import InvalidSourceError, JobCancelledError, PipelineError
from engine.log import setup_logging
from engine.paths import LOG_DIR, ensure_dir, is_within_base
from engine.pipeline import (
    AUDIO_ONLY,
    WITH_ARTWORK,
    WITH_ARTWORK_AND_TAGS,
    AudioPipeline,
    PipelineOptions,
)
from engine.runtime import get_runtime_info
from input.source import parse_source_url
from media.transcode import AUDIO_TARGETS

_BASIC_AUTH_USER = os.environ.get("AUDIODROP_BASIC_AUTH_USER")
_BASIC_AUTH_PASS = os.environ.get("AUDIODROP_BASIC_AUTH_PASS")
_BASIC_AUTH_ENABLED = bool(_BASIC_AUTH_USER and _BASIC_AUTH_PASS)
SWEEP_JOB_ID = "work_dir_sweep"
DOWNLOADS_PREFIX = "/downloads"
_DISCONNECT_POLL_SECONDS = 0.5
_SERVED_EXTENSIONS = {f".{target.extension}" for target in AUDIO_TARGETS.values()}


class DownloadRequest(BaseModel):
    url: Optional[Any] = None


def _env_or_default(name, default):
    value = os.environ.get(name)
    return value if value else default


def _check_basic_auth(header_value):
    if not header_value or not header_value.startswith("Basic "):
        return False
    token = header_value[6:].strip()
    try:
        decoded = base64.b64decode(token.encode("ascii"), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, UnicodeEncodeError):
        return False
    if ":" not in decoded:
        return False
    user, password = decoded.split(":", 1)
    return hmac.compare_digest(user, _BASIC_AUTH_USER) and hmac.compare_digest(password, _BASIC_AUTH_PASS)


def _error_response(message, status_code):
    return JSONResponse({"error": message}, status_code=status_code)


def _is_served_filename(name):
    if not name or name != os.path.basename(name) or "\\" in name:
        return False
    if name.startswith("."):
        return False
    if any(ord(ch) < 32 for ch in name):
        return False
    return os.path.splitext(name)[1].lower() in _SERVED_EXTENSIONS


def _content_disposition(name):
    fallback = name.encode("ascii", "ignore").decode("ascii").replace('"', "'").strip() or "download"
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(name)}"


def _iter_file(path, chunk_size=1024 * 1024):
    with open(path, "rb") as handle:
        while True:
            chunk = handle.read(chunk_size)
            if not chunk:
                break
            yield chunk


async def _watch_disconnect(request: Request, cancel_event: threading.Event):
    while not cancel_event.is_set():
        await asyncio.sleep(_DISCONNECT_POLL_SECONDS)
        if await request.is_disconnected():
            logging.info("Client disconnected; cancelling job for %s", request.url.path)
            cancel_event.set()
            return


async def _run_download(request: Request, payload: DownloadRequest, options: PipelineOptions):
    try:
        source = parse_source_url(payload.url)
    except InvalidSourceError as exc:
        logging.info("Rejected download request: %s", exc)
        return _error_response(exc.message, exc.status_code)

    state = request.app.state
    slots: asyncio.Semaphore = state.job_slots
    if slots.locked():
        return _error_response("Too many downloads in progress, try again later", 429)

    async with slots:
        cancel_event = threading.Event()
        watcher = asyncio.create_task(_watch_disconnect(request, cancel_event))
        try:
            result = await state.pipeline.run(source.url, options, cancel_event=cancel_event)
        except JobCancelledError as exc:
            logging.info("Download cancelled for %s: %s", source.url, exc)
            return _error_response(exc.message, exc.status_code)
        except PipelineError as exc:
            logging.error("Download failed for %s: %s", source.url, exc, exc_info=exc.__cause__ is not None)
            return _error_response(exc.message, exc.status_code)
        finally:
            watcher.cancel()

    return {"success": True, "file": f"{DOWNLOADS_PREFIX}/{quote(result.filename)}"}


router = APIRouter()


@router.post("/download")
async def download_audio(request: Request, payload: DownloadRequest):
    return await _run_download(request, payload, AUDIO_ONLY)


@router.post("/download-image")
async def download_audio_with_artwork(request: Request, payload: DownloadRequest):
    return await _run_download(request, payload, WITH_ARTWORK)


@router.post("/download-image-detail")
async def download_audio_with_artwork_and_tags(request: Request, payload: DownloadRequest):
    return await _run_download(request, payload, WITH_ARTWORK_AND_TAGS)


@router.get(DOWNLOADS_PREFIX + "/{filename}")
async def serve_download(request: Request, filename: str):
    downloads_dir = request.app.state.config.downloads_dir
    if not _is_served_filename(filename):
        return _error_response("File not found", 404)
    candidate = os.path.join(downloads_dir, filename)
    if not is_within_base(candidate, downloads_dir) or not os.path.isfile(candidate):
        return _error_response("File not found", 404)
    if os.path.getsize(candidate) <= 0:
        # Reserved name whose job has not finished moving the file in yet.
        return _error_response("File not found", 404)
    content_type, _ = mimetypes.guess_type(candidate)
    headers = {"Content-Disposition": _content_disposition(filename)}
    return StreamingResponse(
        _iter_file(candidate),
        media_type=content_type or "application/octet-stream",
        headers=headers,
    )


@router.get("/api/health")
async def api_health():
    return {"status": "ok", **get_runtime_info()}


def create_app(config: PipelineConfig | None = None, *, pipeline=None, log_dir=None) -> FastAPI:
    """Build the FastAPI app around an explicitly configured pipeline."""
    config = config or load_runtime_config()
    app = FastAPI(
        title=APP_NAME,
        description="Fetch the audio of a video URL, convert it and tag it with cover art.",
    )
    app.state.config = config
    app.state.pipeline = pipeline or AudioPipeline(config)
    app.state.log_dir = log_dir or str(LOG_DIR)
    app.state.scheduler = None
    app.state.job_slots = asyncio.Semaphore(config.max_concurrent_jobs)

    if config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(config.cors_origins),
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
        )

    @app.middleware("http")
    async def request_limits_middleware(request: Request, call_next):
        length = request.headers.get("content-length")
        if length is not None:
            try:
                too_large = int(length) > config.max_request_bytes
            except ValueError:
                return _error_response("Invalid Content-Length", 400)
            if too_large:
                return _error_response("Request body too large", 413)
        return await call_next(request)

    @app.middleware("http")
    async def basic_auth_middleware(request: Request, call_next):
        if not _BASIC_AUTH_ENABLED:
            return await call_next(request)
        if request.method == "OPTIONS":
            return await call_next(request)
        auth_header = request.headers.get("authorization")
        if not _check_basic_auth(auth_header):
            return PlainTextResponse(
                "Unauthorized",
                status_code=401,
                headers={"WWW-Authenticate": "Basic"},
            )
        return await call_next(request)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logging.info("Invalid request body for %s: %s", request.url.path, exc.errors())
        return _error_response("Invalid request body", 400)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logging.exception("Unhandled error for %s", request.url.path)
        return _error_response("Internal server error", 500)

    @app.on_event("startup")
    async def startup():
        setup_logging(app.state.log_dir)
        ensure_dir(config.downloads_dir)
        ensure_dir(config.work_dir)
        sweep_stale_work_dirs(config.work_dir, config.stale_work_dir_seconds)
        scheduler = BackgroundScheduler(timezone="UTC")
        scheduler.add_job(
            sweep_stale_work_dirs,
            IntervalTrigger(minutes=STALE_SWEEP_INTERVAL_MINUTES),
            args=[config.work_dir, config.stale_work_dir_seconds],
            id=SWEEP_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        app.state.scheduler = scheduler
        logging.info(
            "%s ready: downloads=%s work=%s format=%s",
            APP_NAME,
            config.downloads_dir,
            config.work_dir,
            config.audio_format,
        )

    @app.on_event("shutdown")
    async def shutdown():
        scheduler = app.state.scheduler
        if scheduler:
            scheduler.shutdown(wait=False)
            app.state.scheduler = None

    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    host = _env_or_default("AUDIODROP_HOST", "127.0.0.1")
    port = int(_env_or_default("AUDIODROP_PORT", "5000"))
    uvicorn.run("api.main:app", host=host, port=port, reload=False)
