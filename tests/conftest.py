"""Test fixtures for music_presence tests."""

import os
from concurrent.futures import Future
from typing import Optional

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

import pytest

from music_presence.core.models import ConnectionState, TrackSample


class InlineExecutor:
    """Runs submitted work immediately on the calling thread."""

    def __init__(self):
        self.calls = []

    def submit(self, fn, *args, **kwargs) -> Future:
        self.calls.append(fn)
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:  # noqa: BLE001
            future.set_exception(e)
        return future

    def shutdown(self, wait=True):
        pass


class FakeTransport:
    """Records frames instead of writing to a socket."""

    def __init__(self, client_id, ipc_dir=None, on_connect=None, on_disconnect=None, reconnect_delay=1.0):
        self.client_id = client_id
        self.ipc_dir = ipc_dir
        self.on_connect = on_connect
        self.on_disconnect = on_disconnect
        self.reconnect_delay = reconnect_delay
        self.state = ConnectionState.DISCONNECTED
        self.sent = []
        self.connect_calls = 0
        self.reconnect_calls = 0
        self.accept_connect = True

    @property
    def is_connected(self) -> bool:
        return self.state is not ConnectionState.DISCONNECTED

    @property
    def is_ready(self) -> bool:
        return self.state is ConnectionState.READY

    def connect(self) -> bool:
        self.connect_calls += 1
        if not self.accept_connect:
            return False
        self.state = ConnectionState.CONNECTING
        return True

    def make_ready(self):
        self.state = ConnectionState.READY
        if self.on_connect:
            self.on_connect()

    def disconnect(self):
        if self.state is ConnectionState.DISCONNECTED:
            return
        self.state = ConnectionState.DISCONNECTED
        if self.on_disconnect:
            self.on_disconnect()

    def reconnect(self):
        self.reconnect_calls += 1
        self.disconnect()

    def send(self, opcode, payload) -> bool:
        if not self.is_connected:
            return False
        self.sent.append((opcode, payload))
        return True


class FakeSource:
    def __init__(self, sample: Optional[TrackSample] = None):
        self.sample = sample
        self.error: Optional[Exception] = None
        self.calls = 0

    def fetch_sample(self) -> Optional[TrackSample]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.sample


def make_sample(**overrides) -> TrackSample:
    values = {
        "title": "X",
        "artist": "Y",
        "album": "Z",
        "is_playing": True,
        "duration": 200.0,
        "position": 10.0,
    }
    values.update(overrides)
    return TrackSample(**values)


@pytest.fixture
def sample_factory():
    return make_sample


@pytest.fixture
def inline_executor() -> InlineExecutor:
    return InlineExecutor()


@pytest.fixture
def fake_source() -> FakeSource:
    return FakeSource(make_sample())
