# core/reconciler.py
"""
Decides when and what to push to Discord.

Two producers feed samples in: the poll timers and the player's change
notifications. Neither is fully trustworthy. Automation calls fail
transiently and report absence, and resuming a paused track sometimes
reports a position of zero. The Reconciler is pure: it never touches a
socket or a timer, it only turns (sample, source, force) into an optional
PresenceUpdate and remembers what it last pushed.
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from pypresence.types import ActivityType

from .models import ChangeNotification, PresenceUpdate, SampleSource, TrackSample

logger = logging.getLogger(__name__)

DRIFT_SECONDS = 5.0
NOTIFICATION_GRACE_SECONDS = 60.0
FETCH_GRACE_SECONDS = 60.0
MAX_POLL_FAILURES = 3
RESUME_ZERO_SECONDS = 0.1
SKIP_POLL_NOTIFICATION_SECONDS = 20.0
SKIP_POLL_POSITION_SECONDS = 10.0


@dataclass
class PresenceState:
    # None: nothing pushed yet this session, "": presence cleared
    last_pushed_identity: Optional[str] = None
    last_known_position: float = 0.0
    last_position_update_at: Optional[float] = None
    last_base_track_id: str = ""
    last_notification_at: Optional[float] = None
    last_successful_fetch_at: Optional[float] = None
    consecutive_poll_failures: int = 0
    last_is_playing: bool = False


def _within(now: float, then: Optional[float], seconds: float) -> bool:
    return then is not None and now - then < seconds


class Reconciler:
    def __init__(
        self,
        large_image_key: str = "apple_music",
        clock: Callable[[], float] = time.time,
    ):
        self.large_image_key = large_image_key
        self.clock = clock
        self.state = PresenceState()

    @property
    def is_playing(self) -> bool:
        return self.state.last_is_playing

    def record_notification(self, note: Optional[ChangeNotification] = None, now: Optional[float] = None) -> None:
        self.state.last_notification_at = self.clock() if now is None else now
        if note is not None:
            logger.debug("Player notification: %s %r", note.player_state, note.title)

    def should_skip_poll(self, now: Optional[float] = None) -> bool:
        """A fresh notification plus fresh playing position makes a slow poll redundant."""
        now = self.clock() if now is None else now
        s = self.state
        return (
            _within(now, s.last_notification_at, SKIP_POLL_NOTIFICATION_SECONDS)
            and s.last_is_playing
            and _within(now, s.last_position_update_at, SKIP_POLL_POSITION_SECONDS)
        )

    def mark_cleared(self) -> None:
        self.state.last_pushed_identity = ""

    def apply(
        self,
        sample: Optional[TrackSample],
        source: SampleSource,
        force: bool = False,
        now: Optional[float] = None,
    ) -> Optional[PresenceUpdate]:
        now = self.clock() if now is None else now
        if sample is None:
            return self._apply_absence(source, now)
        return self._apply_sample(sample, force, now)

    def _apply_absence(self, source: SampleSource, now: float) -> Optional[PresenceUpdate]:
        s = self.state
        if source is not SampleSource.POLL:
            return None

        s.last_is_playing = False
        s.consecutive_poll_failures += 1

        if _within(now, s.last_notification_at, NOTIFICATION_GRACE_SECONDS):
            logger.debug("No track info, keeping presence (recent notification)")
            return None
        if (
            _within(now, s.last_successful_fetch_at, FETCH_GRACE_SECONDS)
            and s.consecutive_poll_failures < MAX_POLL_FAILURES
        ):
            logger.debug(
                "No track info, keeping presence (failure %d of %d)",
                s.consecutive_poll_failures,
                MAX_POLL_FAILURES,
            )
            return None

        if s.last_pushed_identity == "":
            return None

        s.last_pushed_identity = ""
        logger.info("No music playing, clearing presence.")
        return PresenceUpdate(clear=True)

    def _apply_sample(self, sample: TrackSample, force: bool, now: float) -> Optional[PresenceUpdate]:
        s = self.state
        was_playing = s.last_is_playing

        s.consecutive_poll_failures = 0
        s.last_successful_fetch_at = now
        s.last_is_playing = sample.is_playing

        base_id = sample.base_track_id
        identity = sample.identity
        delta = abs(sample.position - s.last_known_position)

        changed = identity != s.last_pushed_identity
        drifted = sample.is_playing and delta >= DRIFT_SECONDS
        if not (changed or force or drifted):
            return None

        position = sample.position
        if (
            sample.is_playing
            and not was_playing
            and base_id == s.last_base_track_id
            and sample.position <= RESUME_ZERO_SECONDS
            and s.last_known_position > RESUME_ZERO_SECONDS
        ):
            logger.debug("Resume reported position 0, keeping %.1fs", s.last_known_position)
            position = s.last_known_position

        s.last_pushed_identity = identity
        s.last_known_position = position
        s.last_position_update_at = now
        s.last_base_track_id = base_id

        return self._presence_for(sample, position, now)

    def _presence_for(self, sample: TrackSample, position: float, now: float) -> PresenceUpdate:
        start = end = None
        # Progress bar only while playing
        if sample.is_playing:
            start = now - position
            if sample.duration > 0:
                end = start + sample.duration

        return PresenceUpdate(
            details=sample.title or "Listening",
            state=sample.artist or None,
            large_image=sample.artwork_url or self.large_image_key,
            large_text=sample.album or None,
            small_image="play" if sample.is_playing else "pause",
            small_text="Playing" if sample.is_playing else "Paused",
            start=start,
            end=end,
            activity_type=ActivityType.LISTENING.value,
            identity=sample.identity,
        )
