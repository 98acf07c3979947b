# core/config.py
import logging
import os
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

# APP ID
APP_CLIENT_ID = "1393235679097393182"

POLL_SECONDS = 5.0
FAST_POLL_SECONDS = 2.0
RECONNECT_DELAY_SECONDS = 1.0
LARGE_IMAGE_KEY = "apple_music"

IPC_PREFIX = "discord-ipc-"
IPC_CANDIDATES = 10


def default_ipc_dir() -> str:
    for name in ("XDG_RUNTIME_DIR", "TMPDIR", "TMP", "TEMP"):
        value = os.environ.get(name)
        if value:
            return value
    return "/tmp"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r (not a number)", name, raw)
        return default
    if value <= 0:
        logger.warning("Ignoring %s=%r (must be positive)", name, raw)
        return default
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class PresenceConfig:
    client_id: str = APP_CLIENT_ID
    ipc_dir: Optional[str] = None
    poll_interval: float = POLL_SECONDS
    fast_interval: float = FAST_POLL_SECONDS
    reconnect_delay: float = RECONNECT_DELAY_SECONDS
    large_image_key: str = LARGE_IMAGE_KEY
    artwork_lookup: bool = True

    @classmethod
    def from_env(cls) -> "PresenceConfig":
        return cls(
            client_id=os.getenv("MUSIC_PRESENCE_CLIENT_ID", "").strip() or APP_CLIENT_ID,
            ipc_dir=os.getenv("MUSIC_PRESENCE_IPC_DIR", "").strip() or None,
            poll_interval=_env_float("MUSIC_PRESENCE_POLL_SECONDS", POLL_SECONDS),
            fast_interval=_env_float("MUSIC_PRESENCE_FAST_SECONDS", FAST_POLL_SECONDS),
            artwork_lookup=_env_bool("MUSIC_PRESENCE_ARTWORK", True),
        )
