# core/debug.py
import logging
import os
import tempfile
from pathlib import Path


_DEBUG = os.getenv("MUSIC_PRESENCE_DEBUG") == "1"
_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"
_configured = False


def log_path() -> Path:
    override = os.getenv("MUSIC_PRESENCE_LOG", "").strip()
    if override:
        return Path(override)
    return Path(tempfile.gettempdir()) / "music_presence_debug.log"


def setup_logging(level=None) -> None:
    """Configure the root logger once.

    INFO to stderr by default. With MUSIC_PRESENCE_DEBUG=1 the level drops to
    DEBUG and everything is also appended to the debug log file.
    """
    global _configured
    if _configured:
        return
    _configured = True

    if level is None:
        level = logging.DEBUG if _DEBUG else logging.INFO

    root = logging.getLogger()
    root.setLevel(level)
    formatter = logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    stream = logging.StreamHandler()
    stream.setFormatter(formatter)
    root.addHandler(stream)

    if _DEBUG:
        try:
            handler = logging.FileHandler(log_path(), mode="a", encoding="utf-8")
        except OSError as e:
            root.warning("Debug log file unavailable: %s", e)
        else:
            handler.setFormatter(formatter)
            root.addHandler(handler)
