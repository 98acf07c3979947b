# core/transport.py
import logging
import os
import socket
import threading
from typing import Callable, List, Optional

from .config import IPC_CANDIDATES, IPC_PREFIX, RECONNECT_DELAY_SECONDS, default_ipc_dir
from .encoder import (
    ConnectionClosed,
    FrameError,
    Opcode,
    build_handshake,
    decode_payload,
    encode_frame,
    read_frame,
)
from .models import ConnectionState, Frame

logger = logging.getLogger(__name__)

HANDSHAKE_VERSION = 1
CONNECT_TIMEOUT_SECONDS = 1.0
READER_JOIN_SECONDS = 2.0


def display_name(user: Optional[dict]) -> str:
    user = user or {}
    name = user.get("username") or "Unknown"
    disc = user.get("discriminator", "")
    return f"{name}#{disc}" if disc and disc != "0" else name


class IpcTransport:
    """Owns one Discord IPC socket at a time.

    on_connect fires once per connection when Discord answers the handshake
    with READY. on_disconnect fires at most once per connection, whichever of
    disconnect() or the peer closing gets there first. Both run on whatever
    thread noticed the event (the reader thread, the caller of disconnect(),
    or the reconnect timer).
    """

    def __init__(
        self,
        client_id: str,
        ipc_dir: Optional[str] = None,
        on_connect: Optional[Callable[[], None]] = None,
        on_disconnect: Optional[Callable[[], None]] = None,
        reconnect_delay: float = RECONNECT_DELAY_SECONDS,
        prefix: str = IPC_PREFIX,
    ):
        self.client_id = client_id
        self.ipc_dir = ipc_dir
        self.reconnect_delay = reconnect_delay
        self.prefix = prefix
        self.user: Optional[dict] = None

        self._on_connect = on_connect
        self._on_disconnect = on_disconnect

        # Never held together; _write_lock only guards the descriptor in send().
        self._lock = threading.RLock()
        self._write_lock = threading.Lock()

        self._state = ConnectionState.DISCONNECTED
        self._sock: Optional[socket.socket] = None
        self._reader: Optional[threading.Thread] = None
        self._stop_reading: Optional[threading.Event] = None
        self._connection_id = 0
        self._ready_fired = False
        self._disconnect_fired = True
        self._reconnect_timer: Optional[threading.Timer] = None

    # ------------------------------------------------------------------
    # state

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is not ConnectionState.DISCONNECTED

    @property
    def is_ready(self) -> bool:
        return self._state is ConnectionState.READY

    def candidate_paths(self) -> List[str]:
        root = self.ipc_dir or default_ipc_dir()
        return [os.path.join(root, f"{self.prefix}{i}") for i in range(IPC_CANDIDATES)]

    # ------------------------------------------------------------------
    # lifecycle

    def connect(self) -> bool:
        with self._lock:
            if self._state is not ConnectionState.DISCONNECTED:
                logger.debug("connect() ignored, already %s", self._state.value)
                return True
            self._state = ConnectionState.CONNECTING

        for path in self.candidate_paths():
            sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
            try:
                sock.settimeout(CONNECT_TIMEOUT_SECONDS)
                sock.connect(path)
                sock.settimeout(None)
            except OSError:
                sock.close()
                continue

            with self._lock:
                if self._state is not ConnectionState.CONNECTING:
                    # disconnect() ran while we were dialing
                    sock.close()
                    return False
                self._connection_id += 1
                connection_id = self._connection_id
                stop = threading.Event()
                self._sock = sock
                self._stop_reading = stop
                self._ready_fired = False
                self._disconnect_fired = False
                self.user = None

            logger.info("Connected to Discord IPC at %s", path)
            self.send(Opcode.HANDSHAKE, build_handshake(HANDSHAKE_VERSION, self.client_id))

            reader = threading.Thread(
                target=self._read_loop,
                args=(sock, connection_id, stop),
                name=f"ipc-reader-{connection_id}",
                daemon=True,
            )
            with self._lock:
                if self._connection_id == connection_id and self._sock is sock:
                    self._reader = reader
                    reader.start()
            return True

        with self._lock:
            if self._state is ConnectionState.CONNECTING:
                self._state = ConnectionState.DISCONNECTED
        logger.warning(
            "Could not connect to Discord (tried %d endpoints). Make sure Discord is running.",
            IPC_CANDIDATES,
        )
        return False

    def disconnect(self) -> None:
        self._cancel_reconnect()
        with self._lock:
            connection_id = self._connection_id
            if self._state is ConnectionState.CONNECTING and self._sock is None:
                self._state = ConnectionState.DISCONNECTED
        self._close_connection(connection_id)

    def reconnect(self) -> None:
        self.disconnect()
        timer = threading.Timer(self.reconnect_delay, self._reconnect_fired)
        timer.daemon = True
        with self._lock:
            self._reconnect_timer = timer
        logger.info("Reconnecting in %.1fs", self.reconnect_delay)
        timer.start()

    def _cancel_reconnect(self) -> None:
        with self._lock:
            timer, self._reconnect_timer = self._reconnect_timer, None
        if timer is not None:
            timer.cancel()

    def _reconnect_fired(self) -> None:
        with self._lock:
            if self._reconnect_timer is not threading.current_thread():
                return
            self._reconnect_timer = None
        self.connect()

    def _close_connection(self, connection_id: int) -> bool:
        with self._lock:
            if self._disconnect_fired or connection_id != self._connection_id:
                return False
            self._disconnect_fired = True
            self._state = ConnectionState.DISCONNECTED
            sock, self._sock = self._sock, None
            reader, self._reader = self._reader, None
            stop, self._stop_reading = self._stop_reading, None

        # Stop the reader before the descriptor goes away so it never
        # mistakes our own close for the peer hanging up. Shutting down
        # also fails a send() stuck on a full buffer with EPIPE.
        if stop is not None:
            stop.set()
        if sock is not None:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
        if reader is not None and reader is not threading.current_thread():
            reader.join(READER_JOIN_SECONDS)
        if sock is not None:
            # Wait out any send() still using the descriptor.
            with self._write_lock:
                sock.close()

        logger.info("Disconnected from Discord.")
        if self._on_disconnect:
            self._on_disconnect()
        return True

    # ------------------------------------------------------------------
    # io

    def send(self, opcode: int, payload: dict) -> bool:
        try:
            frame = encode_frame(opcode, payload)
        except (TypeError, ValueError) as e:
            logger.error("Could not encode payload for opcode %d: %s", opcode, e)
            return False

        with self._write_lock:
            sock = self._sock
            if sock is None:
                logger.debug("Not connected, dropping opcode %d frame", opcode)
                return False
            try:
                written = sock.send(frame)
            except OSError as e:
                logger.error("Write error: %s", e)
                return False

        if written != len(frame):
            logger.error("Write error: sent %d of %d bytes", written, len(frame))
            return False
        return True

    def _read_loop(self, sock: socket.socket, connection_id: int, stop: threading.Event) -> None:
        reader = sock.makefile("rb")
        try:
            while not stop.is_set():
                try:
                    frame = read_frame(reader)
                except ConnectionClosed as e:
                    if not stop.is_set():
                        logger.info("Discord disconnected (%s).", e)
                        self._close_connection(connection_id)
                    return
                except FrameError as e:
                    if not stop.is_set():
                        logger.error("Bad frame from Discord: %s", e)
                        self._close_connection(connection_id)
                    return
                except (OSError, ValueError) as e:
                    if not stop.is_set():
                        logger.error("Read error from socket: %s", e)
                        self._close_connection(connection_id)
                    return

                self._handle_frame(frame, connection_id)
        finally:
            try:
                reader.close()
            except OSError:
                pass

    def _handle_frame(self, frame: Frame, connection_id: int) -> None:
        if frame.opcode != Opcode.FRAME:
            logger.debug("Ignoring frame with opcode %d", frame.opcode)
            return

        try:
            data = decode_payload(frame)
        except ValueError as e:
            logger.error("JSON parse error from Discord payload: %s", e)
            return

        evt = data.get("evt")
        if evt == "READY":
            with self._lock:
                if connection_id != self._connection_id or self._ready_fired:
                    return
                self._ready_fired = True
                self._state = ConnectionState.READY
                body = data.get("data")
                self.user = body.get("user") if isinstance(body, dict) else None
            logger.info("Connected as %s", display_name(self.user))
            if self._on_connect:
                self._on_connect()
        elif evt == "ERROR":
            logger.error("Discord RPC error: %s", data.get("data"))
        else:
            logger.debug("Ignoring Discord event %r", evt)
