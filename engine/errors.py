"""Error taxonomy for the download/transcode/tag pipeline."""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for failures that end a pipeline run.

    ``message`` is safe to return to HTTP clients; the exception string and
    chained cause carry the internal detail that only goes to the log.
    """

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, detail: str | None = None, *, message: str | None = None) -> None:
        super().__init__(detail or message or self.default_message)
        self.message = message or self.default_message


class InvalidSourceError(PipelineError):
    """The input URL does not match the provider's URL grammar."""

    status_code = 400
    default_message = "Invalid YouTube URL"


class FetchError(PipelineError):
    """Metadata lookup or audio download failed."""

    default_message = "Failed to fetch audio"


class TranscodeError(PipelineError):
    """ffmpeg/ffprobe failed while converting the downloaded audio."""

    default_message = "Failed to convert audio"


class MuxError(PipelineError):
    """ffmpeg failed while writing tags or attaching cover art."""

    default_message = "Failed to write audio metadata"


class StorageError(PipelineError):
    """Filesystem failure (missing directory, disk full, permissions)."""

    default_message = "Failed to store audio file"


class JobCancelledError(PipelineError):
    """Raised to abort an in-flight job, e.g. after the client disconnected."""

    status_code = 499
    default_message = "Request cancelled"
