#core/music_macos.py
import logging
import subprocess
from typing import Optional

from .models import AutomationPermissionError, SampleSource, TrackSample

logger = logging.getLogger(__name__)

OSASCRIPT_TIMEOUT = 5.0

PERMISSION_MESSAGE = (
    "This app needs permission to control Apple Music. Please go to "
    "System Settings > Privacy & Security > Automation, find '{app}' and "
    "enable the checkbox next to 'Music'."
)

# -1743: "Not authorized to send Apple events"
_DENIED_MARKERS = ("-1743", "not authorized to send apple events")

_SCRIPT = r'''
tell application "Music"
    if it is not running then
        return "OK=0"
    end if

    set ps to (player state as string)
    if ps is not "playing" and ps is not "paused" then
        return "OK=0"
    end if

    set tName to (name of current track as string)
    set tArtist to (artist of current track as string)
    set tAlbum to (album of current track as string)
    set tDur to (duration of current track)
    set tPos to (player position)

    return "OK=1" & tab & tName & tab & tArtist & tab & tAlbum & tab & (tDur as string) & tab & (tPos as string) & tab & ps
end tell
'''


def _to_float(value: str) -> float:
    # AppleScript formats reals with the user's locale ("12,5" in many).
    try:
        return float(value.strip().replace(",", "."))
    except ValueError:
        return 0.0


def parse_output(out: str) -> Optional[TrackSample]:
    out = out.strip("\r\n")
    if not out.startswith("OK=1\t"):
        return None

    parts = out.split("\t")
    if len(parts) < 7:
        logger.warning("Unexpected track info format from Music: %r", out)
        return None

    return TrackSample(
        title=parts[1],
        artist=parts[2],
        album=parts[3],
        duration=_to_float(parts[4]),
        position=_to_float(parts[5]),
        is_playing=parts[6].strip().lower() == "playing",
        source=SampleSource.POLL,
    )


class AppleMusicSource:
    """Reads the current track from Music.app through osascript."""

    def __init__(self, app_name: str = "Music Presence"):
        self.app_name = app_name

    def fetch_sample(self) -> Optional[TrackSample]:
        try:
            result = subprocess.run(
                ["osascript", "-e", _SCRIPT],
                capture_output=True,
                text=True,
                timeout=OSASCRIPT_TIMEOUT,
            )
        except subprocess.TimeoutExpired:
            logger.warning("osascript timed out after %.0fs", OSASCRIPT_TIMEOUT)
            return None
        except OSError as e:
            logger.error("Could not run osascript: %s", e)
            return None

        if result.returncode != 0:
            err = (result.stderr or "").strip()
            if any(marker in err.lower() for marker in _DENIED_MARKERS):
                logger.error("AppleScript permission error: automation access to Music denied.")
                raise AutomationPermissionError(PERMISSION_MESSAGE.format(app=self.app_name))
            logger.debug("AppleScript execution error: %s", err)
            return None

        return parse_output(result.stdout or "")
