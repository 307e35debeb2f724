"""Download -> transcode -> tag pipeline for a single source URL."""

from __future__ import annotations

import asyncio
import functools
import logging
import os
import threading
import time
from dataclasses import dataclass

import anyio

from engine.artifacts import JobArtifacts
from engine.core import PipelineConfig
from engine.errors import JobCancelledError, PipelineError, StorageError
from engine.fetcher import MediaFetcher
from engine.log import log_event
from input.source import parse_source_url
from media.transcode import get_audio_target, transcode
from metadata.artwork import fetch_best_thumbnail
from metadata.naming import build_audio_filename
from metadata.tagging import write_tags_and_artwork
from metadata.types import MediaMetadata, TagSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineOptions:
    embed_artwork: bool = False
    populate_tags: bool = False


AUDIO_ONLY = PipelineOptions()
WITH_ARTWORK = PipelineOptions(embed_artwork=True)
WITH_ARTWORK_AND_TAGS = PipelineOptions(embed_artwork=True, populate_tags=True)


@dataclass(frozen=True)
class PipelineResult:
    request_id: str
    path: str
    filename: str
    metadata: MediaMetadata
    has_artwork: bool


class AudioPipeline:
    """Sequence fetch, thumbnail, transcode and mux steps for one URL.

    Collaborators are injectable so tests can replace yt-dlp and ffmpeg.
    Blocking steps run on worker threads; the coroutine itself only
    coordinates them.
    """

    def __init__(
        self,
        config: PipelineConfig,
        *,
        fetcher=None,
        thumbnail_fetcher=None,
        transcoder=None,
        muxer=None,
    ):
        self.config = config
        self.target = get_audio_target(config.audio_format)
        self.fetcher = fetcher or MediaFetcher(
            socket_timeout=config.socket_timeout,
            cookie_file=config.cookie_file,
        )
        self.thumbnail_fetcher = thumbnail_fetcher or fetch_best_thumbnail
        self.transcoder = transcoder or transcode
        self.muxer = muxer or write_tags_and_artwork

    async def run(self, url, options: PipelineOptions = AUDIO_ONLY, *, cancel_event=None) -> PipelineResult:
        source = parse_source_url(url)
        cancel_event = cancel_event or threading.Event()
        started = time.monotonic()

        with JobArtifacts(self.config.work_dir, self.config.downloads_dir) as job:
            log_event(
                logging.INFO,
                "pipeline_started",
                request_id=job.request_id,
                url=source.url,
                embed_artwork=options.embed_artwork,
                populate_tags=options.populate_tags,
            )
            try:
                result = await self._run_steps(source, options, job, cancel_event)
            except PipelineError as exc:
                log_event(
                    logging.WARNING if isinstance(exc, JobCancelledError) else logging.ERROR,
                    "pipeline_failed",
                    request_id=job.request_id,
                    url=source.url,
                    error_type=type(exc).__name__,
                    error=str(exc),
                    elapsed=round(time.monotonic() - started, 3),
                )
                raise
            except OSError as exc:
                log_event(
                    logging.ERROR,
                    "pipeline_failed",
                    request_id=job.request_id,
                    url=source.url,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                raise StorageError(str(exc)) from exc

        log_event(
            logging.INFO,
            "pipeline_completed",
            request_id=result.request_id,
            url=source.url,
            file=result.filename,
            has_artwork=result.has_artwork,
            elapsed=round(time.monotonic() - started, 3),
        )
        return result

    async def _run_steps(self, source, options, job, cancel_event):
        meta, info = await self._in_thread(self.fetcher.resolve, source)
        self._check_cancelled(cancel_event)

        deadline = time.monotonic() + self.config.fetch_timeout
        download = functools.partial(
            self.fetcher.download_audio,
            info,
            job.work_dir,
            job.audio_stem,
            deadline=deadline,
            cancel_event=cancel_event,
        )
        audio_task = asyncio.ensure_future(self._in_thread(download))
        thumbnail_task = None
        if options.embed_artwork:
            thumbnail_task = asyncio.ensure_future(self._fetch_thumbnail(meta))

        try:
            audio_path = await audio_task
        except BaseException:
            if thumbnail_task is not None:
                thumbnail_task.cancel()
            raise

        thumbnail_path = None
        if thumbnail_task is not None:
            artwork = await thumbnail_task
            if artwork:
                thumbnail_path = job.write_thumbnail(artwork["data"])
        self._check_cancelled(cancel_event)

        transcoded_path = job.transcoded_path(self.target.extension)
        await self._in_thread(
            functools.partial(
                self.transcoder,
                audio_path,
                transcoded_path,
                audio_format=self.config.audio_format,
                bitrate=self.config.audio_bitrate,
                timeout=self.config.transcode_timeout,
                cancel_event=cancel_event,
            )
        )
        self._check_cancelled(cancel_event)

        tags = TagSet.from_metadata(meta) if options.populate_tags else TagSet()
        tagged_path = job.tagged_path(self.target.extension)
        await self._in_thread(
            functools.partial(
                self.muxer,
                transcoded_path,
                tagged_path,
                tags=tags,
                thumbnail_path=thumbnail_path,
                audio_format=self.config.audio_format,
                timeout=self.config.transcode_timeout,
                cancel_event=cancel_event,
            )
        )
        self._check_cancelled(cancel_event)

        filename = build_audio_filename(meta.title, self.target.extension, fallback=meta.video_id or source.video_id)
        final_path = await self._in_thread(job.commit, tagged_path, filename)
        return PipelineResult(
            request_id=job.request_id,
            path=final_path,
            filename=os.path.basename(final_path),
            metadata=meta,
            has_artwork=thumbnail_path is not None,
        )

    async def _fetch_thumbnail(self, meta):
        """Best-effort cover fetch bounded by ``thumbnail_timeout``; never raises."""
        if meta.best_thumbnail is None:
            return None
        fetch = functools.partial(
            self.thumbnail_fetcher,
            meta.thumbnails,
            max_size_px=self.config.thumbnail_max_size_px,
            timeout=self.config.thumbnail_timeout,
            max_attempts=self.config.thumbnail_max_attempts,
        )
        try:
            with anyio.fail_after(self.config.thumbnail_timeout):
                # Abandoned on timeout; the thread only returns bytes and
                # never touches the request's work dir.
                return await anyio.to_thread.run_sync(fetch, abandon_on_cancel=True)
        except TimeoutError:
            logger.warning("Thumbnail fetch for %s exceeded %.0fs; continuing without artwork", meta.video_id, self.config.thumbnail_timeout)
        except Exception:
            logger.warning("Thumbnail fetch for %s failed; continuing without artwork", meta.video_id, exc_info=True)
        return None

    @staticmethod
    async def _in_thread(func, *args):
        return await anyio.to_thread.run_sync(func, *args)

    @staticmethod
    def _check_cancelled(cancel_event):
        if cancel_event.is_set():
            raise JobCancelledError("cancelled between steps")
