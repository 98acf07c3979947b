"""Tests for IpcTransport against a local Unix-domain server."""

import socket
import threading
import time
from pathlib import Path
from unittest.mock import patch

import pytest

from music_presence.core.encoder import Opcode, decode_payload, encode_frame, read_frame
from music_presence.core.models import ConnectionState
from music_presence.core.transport import IPC_CANDIDATES, IpcTransport, display_name

WAIT = 2.0
READY_EVENT = {
    "cmd": "DISPATCH",
    "evt": "READY",
    "data": {"v": 1, "user": {"id": "1", "username": "tester", "discriminator": "0"}},
}


class FakeDiscord:
    """Minimal IPC server: accepts one client at a time."""

    def __init__(self, path: Path):
        self.path = path
        self.server = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        self.server.bind(str(path))
        self.server.listen(4)
        self.conn = None
        self.reader = None

    def accept(self, timeout: float = WAIT) -> None:
        self.server.settimeout(timeout)
        self.conn, _ = self.server.accept()
        self.conn.settimeout(timeout)
        self.reader = self.conn.makefile("rb")

    def read_frame(self):
        return read_frame(self.reader)

    def send(self, payload: dict, opcode: int = Opcode.FRAME) -> None:
        self.conn.sendall(encode_frame(opcode, payload))

    def send_raw(self, data: bytes) -> None:
        self.conn.sendall(data)

    def drop_client(self) -> None:
        if self.reader:
            self.reader.close()
        if self.conn:
            self.conn.close()
        self.conn = None
        self.reader = None

    def close(self) -> None:
        self.drop_client()
        self.server.close()


class Callbacks:
    def __init__(self):
        self.connects = 0
        self.disconnects = 0
        self.connected = threading.Event()
        self.disconnected = threading.Event()

    def on_connect(self) -> None:
        self.connects += 1
        self.connected.set()

    def on_disconnect(self) -> None:
        self.disconnects += 1
        self.disconnected.set()


@pytest.fixture
def callbacks() -> Callbacks:
    return Callbacks()


@pytest.fixture
def make_transport(tmp_path: Path, callbacks: Callbacks):
    created = []

    def factory(**kwargs) -> IpcTransport:
        transport = IpcTransport(
            "123",
            ipc_dir=str(tmp_path),
            on_connect=callbacks.on_connect,
            on_disconnect=callbacks.on_disconnect,
            **kwargs,
        )
        created.append(transport)
        return transport

    yield factory
    for transport in created:
        transport.disconnect()


@pytest.fixture
def discord(tmp_path: Path):
    server = FakeDiscord(tmp_path / "discord-ipc-0")
    yield server
    server.close()


class TestDiscovery:
    """Tests for endpoint discovery."""

    def test_candidate_paths(self, make_transport, tmp_path: Path) -> None:
        """Test ten numbered endpoints under the ipc dir."""
        paths = make_transport().candidate_paths()
        assert len(paths) == IPC_CANDIDATES
        assert paths[0] == str(tmp_path / "discord-ipc-0")
        assert paths[-1] == str(tmp_path / "discord-ipc-9")

    def test_all_candidates_fail(self, make_transport, callbacks: Callbacks) -> None:
        """Test connect returns quietly when nothing listens."""
        transport = make_transport()
        assert transport.connect() is False
        assert transport.state is ConnectionState.DISCONNECTED
        assert transport._reader is None
        assert callbacks.connects == 0

    def test_skips_dead_endpoints(self, make_transport, tmp_path: Path) -> None:
        """Test a stale file and missing sockets are skipped."""
        (tmp_path / "discord-ipc-0").write_text("stale")
        server = FakeDiscord(tmp_path / "discord-ipc-3")
        try:
            transport = make_transport()
            assert transport.connect() is True
            server.accept()
            assert server.read_frame().opcode == Opcode.HANDSHAKE
        finally:
            server.close()


class TestHandshake:
    """Tests for the connect handshake and READY."""

    def test_handshake_sent(self, make_transport, discord: FakeDiscord) -> None:
        """Test the first frame is the opcode 0 handshake."""
        transport = make_transport()
        assert transport.connect() is True
        assert transport.state is ConnectionState.CONNECTING
        discord.accept()
        frame = discord.read_frame()
        assert frame.opcode == 0
        assert frame.payload == b'{"v":1,"client_id":"123"}'

    def test_ready_fires_connect_once(self, make_transport, discord: FakeDiscord, callbacks: Callbacks) -> None:
        """Test duplicate READY events fire the callback only once."""
        transport = make_transport()
        transport.connect()
        discord.accept()
        discord.read_frame()

        discord.send(READY_EVENT)
        discord.send(READY_EVENT)
        discord.send({"evt": "SOMETHING_ELSE"})
        assert callbacks.connected.wait(WAIT)
        # Frames are handled in order, so once the close is seen both READYs were.
        discord.drop_client()
        assert callbacks.disconnected.wait(WAIT)

        assert callbacks.connects == 1
        assert transport.user["username"] == "tester"

    def test_ready_sets_state(self, make_transport, discord: FakeDiscord, callbacks: Callbacks) -> None:
        """Test READY moves the connection to ready."""
        transport = make_transport()
        transport.connect()
        discord.accept()
        discord.read_frame()
        discord.send(READY_EVENT)
        assert callbacks.connected.wait(WAIT)
        assert transport.is_ready

    def test_error_event_does_not_connect(self, make_transport, discord: FakeDiscord, callbacks: Callbacks) -> None:
        """Test ERROR events are only logged."""
        transport = make_transport()
        transport.connect()
        discord.accept()
        discord.read_frame()
        discord.send({"evt": "ERROR", "data": {"code": 4000, "message": "Invalid Client ID"}})
        discord.send_raw(b"\x01\x00\x00\x00\x03\x00\x00\x00{{{")
        discord.send(READY_EVENT)
        assert callbacks.connected.wait(WAIT)
        assert callbacks.connects == 1
        assert transport.is_connected


class TestDisconnect:
    """Tests for disconnect paths."""

    def test_peer_close_fires_once(self, make_transport, discord: FakeDiscord, callbacks: Callbacks) -> None:
        """Test the peer hanging up fires disconnect exactly once."""
        transport = make_transport()
        transport.connect()
        discord.accept()
        discord.drop_client()
        assert callbacks.disconnected.wait(WAIT)
        assert transport.state is ConnectionState.DISCONNECTED

        transport.disconnect()
        assert callbacks.disconnects == 1

    def test_short_payload_disconnects(self, make_transport, discord: FakeDiscord, callbacks: Callbacks) -> None:
        """Test a truncated payload ends the connection once."""
        transport = make_transport()
        transport.connect()
        discord.accept()
        discord.send_raw(b"\x01\x00\x00\x00\x0a\x00\x00\x00{}")
        discord.drop_client()
        assert callbacks.disconnected.wait(WAIT)
        time.sleep(0.1)
        assert callbacks.disconnects == 1

    def test_disconnect_twice(self, make_transport, discord: FakeDiscord, callbacks: Callbacks) -> None:
        """Test disconnect is idempotent and fires once."""
        transport = make_transport()
        transport.connect()
        discord.accept()
        transport.disconnect()
        transport.disconnect()
        assert callbacks.disconnects == 1
        assert transport._reader is None

    def test_disconnect_without_connection(self, make_transport, callbacks: Callbacks) -> None:
        """Test disconnect before any connection fires nothing."""
        make_transport().disconnect()
        assert callbacks.disconnects == 0

    def test_disconnect_with_stalled_writer(self, make_transport, discord: FakeDiscord, callbacks: Callbacks) -> None:
        """Test disconnect returns while a send is stuck on a peer that stopped reading."""
        transport = make_transport()
        transport.connect()
        discord.accept()

        def flood() -> None:
            while transport.send(Opcode.FRAME, {"pad": "x" * 500_000}):
                pass

        writer = threading.Thread(target=flood, daemon=True)
        writer.start()
        time.sleep(0.3)
        assert writer.is_alive()

        closer = threading.Thread(target=transport.disconnect, daemon=True)
        closer.start()
        closer.join(5)
        assert not closer.is_alive()
        writer.join(5)
        assert not writer.is_alive()
        assert callbacks.disconnects == 1

    def test_peer_sees_eof(self, make_transport, discord: FakeDiscord) -> None:
        """Test our close reaches the server."""
        transport = make_transport()
        transport.connect()
        discord.accept()
        discord.read_frame()
        transport.disconnect()
        assert discord.reader.read(1) == b""


class TestSend:
    """Tests for framed writes."""

    def test_send_when_disconnected(self, make_transport) -> None:
        """Test sending without a socket is dropped."""
        assert make_transport().send(Opcode.FRAME, {"cmd": "SET_ACTIVITY"}) is False

    def test_unserializable_payload_dropped(self, make_transport, discord: FakeDiscord) -> None:
        """Test encode failures are logged, not raised."""
        transport = make_transport()
        transport.connect()
        assert transport.send(Opcode.FRAME, {"bad": object()}) is False
        assert transport.is_connected

    def test_concurrent_sends_never_interleave(self, make_transport, discord: FakeDiscord) -> None:
        """Test writes from several threads arrive as whole frames."""
        transport = make_transport()
        transport.connect()
        discord.accept()
        discord.read_frame()

        def worker(name: str) -> None:
            for i in range(50):
                transport.send(Opcode.FRAME, {"cmd": "SET_ACTIVITY", "args": {"who": name, "i": i, "pad": "x" * 200}})

        threads = [threading.Thread(target=worker, args=(n,)) for n in ("a", "b", "c")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        seen = {"a": [], "b": [], "c": []}
        for _ in range(150):
            data = decode_payload(discord.read_frame())
            seen[data["args"]["who"]].append(data["args"]["i"])
        for values in seen.values():
            assert values == list(range(50))


class TestReconnect:
    """Tests for delayed reconnect."""

    def test_reconnect_connects_again(self, make_transport, discord: FakeDiscord, callbacks: Callbacks) -> None:
        """Test reconnect drops the socket and dials again after the delay."""
        transport = make_transport(reconnect_delay=0.05)
        transport.connect()
        discord.accept()
        discord.read_frame()

        transport.reconnect()
        assert callbacks.disconnects == 1
        discord.accept()
        assert discord.read_frame().opcode == Opcode.HANDSHAKE
        assert transport.is_connected

    def test_disconnect_cancels_pending_reconnect(self, make_transport, discord: FakeDiscord) -> None:
        """Test a deliberate disconnect wins over the scheduled retry."""
        transport = make_transport(reconnect_delay=0.2)
        transport.connect()
        discord.accept()

        with patch.object(transport, "connect", wraps=transport.connect) as connect:
            transport.reconnect()
            transport.disconnect()
            time.sleep(0.4)
            connect.assert_not_called()
        assert transport.state is ConnectionState.DISCONNECTED


class TestDisplayName:
    """Tests for display_name."""

    def test_new_style_username(self) -> None:
        assert display_name({"username": "tester", "discriminator": "0"}) == "tester"

    def test_legacy_discriminator(self) -> None:
        assert display_name({"username": "tester", "discriminator": "1234"}) == "tester#1234"

    def test_missing_user(self) -> None:
        assert display_name(None) == "Unknown"
