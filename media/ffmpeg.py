"""Run ffmpeg as a subprocess with a deadline and cooperative cancellation."""

from __future__ import annotations

import logging
import re
import subprocess
import threading
import time

from engine.errors import JobCancelledError

logger = logging.getLogger(__name__)

FFMPEG_BINARY = "ffmpeg"
_POLL_INTERVAL_SEC = 0.1
_STDERR_LIMIT = 800


class FFmpegError(RuntimeError):
    """ffmpeg exited non-zero, timed out, or is missing."""

    def __init__(self, message: str, *, returncode: int | None = None, stderr: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


def terminate_subprocess(proc: subprocess.Popen, *, grace_sec: float = 3.0) -> None:
    """Best-effort terminate a subprocess quickly and safely."""
    if proc is None:
        return
    try:
        if proc.poll() is not None:
            return
    except OSError:
        return
    try:
        proc.terminate()
    except OSError:
        pass
    deadline = time.monotonic() + grace_sec
    while time.monotonic() < deadline:
        try:
            if proc.poll() is not None:
                return
        except OSError:
            return
        time.sleep(0.05)
    try:
        proc.kill()
        proc.wait(timeout=grace_sec)
    except (OSError, subprocess.TimeoutExpired):
        pass


def truncate_stderr(text: str, limit: int = _STDERR_LIMIT) -> str:
    text = re.sub(r"\s+", " ", (text or "").replace("\x00", " ")).strip()
    if len(text) > limit:
        return "..." + text[-limit:]
    return text


def run_ffmpeg(
    args: list[str],
    *,
    timeout: float | None = None,
    cancel_event: threading.Event | None = None,
) -> None:
    """Run ``ffmpeg`` with ``args`` and wait for it to finish.

    The argv is passed without a shell. stderr is drained on a helper thread
    so a chatty ffmpeg cannot block on a full pipe while we poll.

    Raises:
        FFmpegError: on non-zero exit, timeout, or a missing binary.
        JobCancelledError: if ``cancel_event`` is set while ffmpeg runs.
    """
    cmd = [FFMPEG_BINARY, "-hide_banner", "-nostdin", "-y", *args]
    logger.debug("Running %s", subprocess.list2cmdline(cmd))
    try:
        proc = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
    except FileNotFoundError as exc:
        raise FFmpegError("ffmpeg is not installed or not available in PATH") from exc

    stderr_chunks: list[str] = []

    def _drain_stderr() -> None:
        if proc.stderr is None:
            return
        for line in proc.stderr:
            stderr_chunks.append(line)

    reader = threading.Thread(target=_drain_stderr, name="ffmpeg-stderr", daemon=True)
    reader.start()

    deadline = time.monotonic() + timeout if timeout else None
    try:
        while proc.poll() is None:
            if cancel_event is not None and cancel_event.is_set():
                terminate_subprocess(proc)
                raise JobCancelledError("ffmpeg cancelled")
            if deadline is not None and time.monotonic() > deadline:
                terminate_subprocess(proc)
                raise FFmpegError(f"ffmpeg timed out after {timeout:.0f}s")
            time.sleep(_POLL_INTERVAL_SEC)
    finally:
        reader.join(timeout=5)

    stderr_text = "".join(stderr_chunks)
    if proc.returncode != 0:
        raise FFmpegError(
            f"ffmpeg failed (rc={proc.returncode}): {truncate_stderr(stderr_text)}",
            returncode=proc.returncode,
            stderr=stderr_text,
        )
