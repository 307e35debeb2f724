import os
import shutil
import sys

from yt_dlp.version import __version__ as ytdlp_version

APP_VERSION = "0.1.0"


def get_runtime_info():
    return {
        "app_version": os.environ.get("AUDIODROP_VERSION", APP_VERSION),
        "python_version": sys.version.split()[0],
        "yt_dlp_version": ytdlp_version,
        "ffmpeg_available": shutil.which("ffmpeg") is not None,
        "ffprobe_available": shutil.which("ffprobe") is not None,
    }
