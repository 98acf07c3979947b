# core/encoder.py
"""
Payload builders and frame codec for the Discord IPC protocol.

Every frame on the socket is:

    4 bytes  opcode (u32, little-endian)
    4 bytes  length (u32, little-endian)
    <length> bytes UTF-8 JSON

Opcode 0 carries the handshake, opcode 1 carries commands and events.
"""
import enum
import json
import os
import struct
import uuid
from typing import Optional

from pypresence.types import ActivityType

from .models import Frame, PresenceUpdate

HEADER = struct.Struct("<II")
MAX_PAYLOAD_BYTES = 1024 * 1024
MAX_TEXT = 128


class Opcode(enum.IntEnum):
    HANDSHAKE = 0
    FRAME = 1
    CLOSE = 2
    PING = 3
    PONG = 4


class FrameError(Exception):
    """Malformed, truncated or oversized frame."""


class ConnectionClosed(FrameError):
    """The peer closed the stream before a full header arrived."""


def _nonce() -> str:
    return str(uuid.uuid4())


def _clip(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value[:MAX_TEXT]


def build_handshake(version: int, client_id: str) -> dict:
    return {"v": version, "client_id": client_id}


def build_set_activity(
    details: Optional[str] = None,
    state: Optional[str] = None,
    large_image: Optional[str] = None,
    large_text: Optional[str] = None,
    small_image: Optional[str] = None,
    small_text: Optional[str] = None,
    start: Optional[float] = None,
    end: Optional[float] = None,
    activity_type: Optional[int] = None,
    clear_timestamps: bool = False,
) -> dict:
    activity = {}

    if activity_type is not None:
        activity["type"] = int(activity_type)
    if details is not None:
        activity["details"] = _clip(details)
    if state is not None:
        activity["state"] = _clip(state)

    images = {
        "large_image": large_image,
        "large_text": _clip(large_text),
        "small_image": small_image,
        "small_text": _clip(small_text),
    }
    if any(v is not None for v in images.values()):
        activity["assets"] = {k: v for k, v in images.items() if v is not None}

    # int() truncates; epoch seconds are positive so this floors
    if not clear_timestamps and (start is not None or end is not None):
        timestamps = {}
        if start is not None:
            timestamps["start"] = int(start)
        if end is not None:
            timestamps["end"] = int(end)
        activity["timestamps"] = timestamps

    return {
        "cmd": "SET_ACTIVITY",
        "args": {"pid": os.getpid(), "activity": activity},
        "nonce": _nonce(),
    }


def build_clear_activity() -> dict:
    # No "activity" key at all: that is what clears it, an empty dict would not.
    return {
        "cmd": "SET_ACTIVITY",
        "args": {"pid": os.getpid()},
        "nonce": _nonce(),
    }


def payload_for_update(update: PresenceUpdate) -> dict:
    if update.clear:
        return build_clear_activity()
    return build_set_activity(
        details=update.details,
        state=update.state,
        large_image=update.large_image,
        large_text=update.large_text,
        small_image=update.small_image,
        small_text=update.small_text,
        start=update.start,
        end=update.end,
        activity_type=(
            update.activity_type if update.activity_type is not None else ActivityType.LISTENING.value
        ),
    )


def encode_frame(opcode: int, payload: dict) -> bytes:
    """Serialize payload to compact JSON and prepend the header.

    Raises TypeError/ValueError if the payload is not JSON serializable.
    """
    data = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    if len(data) > MAX_PAYLOAD_BYTES:
        raise ValueError(f"payload of {len(data)} bytes exceeds {MAX_PAYLOAD_BYTES}")
    return HEADER.pack(int(opcode), len(data)) + data


def read_frame(reader) -> Frame:
    """Read exactly one frame from a buffered binary reader."""
    header = reader.read(HEADER.size)
    if not header:
        raise ConnectionClosed("stream closed by peer")
    if len(header) < HEADER.size:
        raise ConnectionClosed(f"short header: {len(header)} of {HEADER.size} bytes")

    opcode, length = HEADER.unpack(header)
    if length > MAX_PAYLOAD_BYTES:
        raise FrameError(f"payload length {length} exceeds {MAX_PAYLOAD_BYTES}")

    payload = reader.read(length) if length else b""
    if len(payload) != length:
        raise FrameError(f"short payload: {len(payload)} of {length} bytes")

    return Frame(opcode=opcode, payload=payload)


def decode_payload(frame: Frame) -> dict:
    """Parse a frame's JSON body. Raises ValueError on anything but an object."""
    data = json.loads(frame.payload.decode("utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"expected JSON object, got {type(data).__name__}")
    return data
