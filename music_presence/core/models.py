# core/models.py
import enum
from dataclasses import dataclass, field
import time
from typing import Optional


class SampleSource(enum.Enum):
    POLL = "poll"
    NOTIFICATION = "notification"


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    READY = "ready"


@dataclass(frozen=True)
class TrackSample:
    title: str
    artist: str
    album: str
    is_playing: bool
    duration: float  # seconds
    position: float  # seconds
    source: SampleSource = SampleSource.POLL
    captured_at: float = field(default_factory=time.time)
    artwork_url: Optional[str] = None

    @property
    def base_track_id(self) -> str:
        return f"{self.title}|{self.artist}|{self.album}"

    @property
    def identity(self) -> str:
        return f"{self.base_track_id}|{self.is_playing}"


@dataclass(frozen=True)
class ChangeNotification:
    """Partial, unreliable hint pushed by the player that something changed."""
    player_state: str = ""
    title: Optional[str] = None
    artist: Optional[str] = None
    album: Optional[str] = None

    @property
    def has_track_name(self) -> bool:
        return bool((self.title or "").strip())


@dataclass(frozen=True)
class PresenceUpdate:
    clear: bool = False
    details: Optional[str] = None
    state: Optional[str] = None
    large_image: Optional[str] = None
    large_text: Optional[str] = None
    small_image: Optional[str] = None
    small_text: Optional[str] = None
    start: Optional[float] = None
    end: Optional[float] = None
    activity_type: Optional[int] = None
    identity: str = ""


@dataclass(frozen=True)
class Frame:
    opcode: int
    payload: bytes

    @property
    def length(self) -> int:
        return len(self.payload)


class AutomationPermissionError(Exception):
    """The OS refused automation access to the music player."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
