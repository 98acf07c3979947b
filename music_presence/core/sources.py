# core/sources.py
import sys
from typing import Optional, Protocol

from .models import TrackSample


class MusicSource(Protocol):
    def fetch_sample(self) -> Optional[TrackSample]:
        """Current track, or None when nothing is playing.

        Raises AutomationPermissionError when the OS denies access.
        """
        ...


def get_default_source() -> Optional[MusicSource]:
    if sys.platform == "darwin":
        from .music_macos import AppleMusicSource

        return AppleMusicSource()
    return None
