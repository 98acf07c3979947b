# core/scheduler.py
import dataclasses
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional

from PySide6.QtCore import QObject, QTimer, Signal, Slot

from .artwork import lookup_artwork_url
from .config import PresenceConfig
from .encoder import Opcode, payload_for_update
from .models import (
    AutomationPermissionError,
    ChangeNotification,
    PresenceUpdate,
    SampleSource,
    TrackSample,
)
from .reconciler import Reconciler
from .sources import MusicSource
from .transport import IpcTransport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchResult:
    source: SampleSource
    force: bool
    sample: Optional[TrackSample]
    permission_message: Optional[str] = None


class PresenceScheduler(QObject):
    """Drives polling and pushes presence to Discord.

    Lives on the Qt thread that created it. Track fetches run on a single
    worker thread and come back through a queued signal, so the Reconciler
    and every socket write only ever run on the owning thread.
    """

    connected = Signal()
    disconnected = Signal()
    permission_error = Signal(str)
    status = Signal(str)
    presence_pushed = Signal(object)   # PresenceUpdate

    _fetched = Signal(object)          # FetchResult
    _notification = Signal(object)     # ChangeNotification
    _transport_ready = Signal()
    _transport_lost = Signal()

    def __init__(
        self,
        source: MusicSource,
        config: Optional[PresenceConfig] = None,
        transport_factory: Callable[..., IpcTransport] = IpcTransport,
        executor=None,
        reconciler: Optional[Reconciler] = None,
        artwork_lookup: Callable[[str, str, str], Optional[str]] = lookup_artwork_url,
        parent=None,
    ):
        super().__init__(parent)
        self.config = config or PresenceConfig()
        self.source = source
        self.reconciler = reconciler or Reconciler(large_image_key=self.config.large_image_key)
        self._artwork_lookup = artwork_lookup if self.config.artwork_lookup else None
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="music-fetch")

        self._running = False
        self._fetch_in_flight = False
        self._permission_denied = False

        self._fetched.connect(self._on_fetched)
        self._notification.connect(self._on_notification)
        self._transport_ready.connect(self._on_transport_ready)
        self._transport_lost.connect(self._on_transport_lost)

        self.transport = transport_factory(
            self.config.client_id,
            ipc_dir=self.config.ipc_dir,
            on_connect=self._transport_ready.emit,
            on_disconnect=self._transport_lost.emit,
            reconnect_delay=self.config.reconnect_delay,
        )

        self._poll_timer = QTimer(self)
        self._poll_timer.setInterval(int(self.config.poll_interval * 1000))
        self._poll_timer.timeout.connect(self._on_poll_tick)

        self._fast_timer = QTimer(self)
        self._fast_timer.setInterval(int(self.config.fast_interval * 1000))
        self._fast_timer.timeout.connect(self._on_fast_tick)

    @property
    def is_running(self) -> bool:
        return self._running

    # ==================================================
    # CONTROL SURFACE
    # ==================================================

    def start(self):
        if self._running:
            return
        self._running = True
        self.status.emit("Connecting to Discord…")
        self._executor.submit(self._connect)
        self._poll_timer.start()
        self._fast_timer.start()
        self.trigger_immediate_update()

    def stop(self):
        # Timers first, then the transport stops its reader before closing.
        self._poll_timer.stop()
        self._fast_timer.stop()
        if not self._running:
            return
        self._running = False
        self.transport.disconnect()
        self.status.emit("Stopped")

    def reconnect(self):
        logger.info("Manually reconnecting to Discord...")
        self.status.emit("Reconnecting to Discord…")
        self.transport.reconnect()

    def clear(self):
        logger.info("Manually clearing Discord presence...")
        self.reconciler.mark_cleared()
        self._push(PresenceUpdate(clear=True))

    def trigger_immediate_update(self):
        self._request_fetch(SampleSource.POLL, force=True)

    def notify_player_change(self, note: ChangeNotification):
        """Safe to call from any thread."""
        self._notification.emit(note)

    def shutdown(self):
        self.stop()
        self._executor.shutdown(wait=False)

    # ==================================================
    # TRIGGERS
    # ==================================================

    @Slot()
    def _on_poll_tick(self):
        if self.reconciler.should_skip_poll():
            logger.debug("Skipping poll, fresh notification already covers it")
            return
        self._request_fetch(SampleSource.POLL, force=True)

    @Slot()
    def _on_fast_tick(self):
        if not self.reconciler.is_playing:
            return
        self._request_fetch(SampleSource.POLL, force=False)

    @Slot(object)
    def _on_notification(self, note: ChangeNotification):
        if not self._running:
            return
        self.reconciler.record_notification(note)
        if note.has_track_name:
            self._request_fetch(SampleSource.NOTIFICATION, force=False)
        else:
            self._request_fetch(SampleSource.POLL, force=True)

    def _request_fetch(self, source: SampleSource, force: bool):
        if not self._running:
            return
        if self._fetch_in_flight:
            logger.debug("Fetch already in flight, dropping %s trigger", source.value)
            return
        self._fetch_in_flight = True
        self._executor.submit(self._fetch, source, force)

    # ==================================================
    # WORKER THREAD
    # ==================================================

    def _connect(self):
        if not self.transport.connect():
            self.status.emit("Discord not running")

    def _fetch(self, source: SampleSource, force: bool):
        sample = None
        denied = None
        try:
            sample = self.source.fetch_sample()
        except AutomationPermissionError as e:
            denied = e.message
        except Exception as e:  # noqa: BLE001
            logger.exception("Apple Music read failed: %s", e)

        if sample is not None:
            sample = dataclasses.replace(sample, source=source)
            if self._artwork_lookup:
                artwork_url = self._artwork_lookup(sample.title, sample.artist, sample.album)
                if artwork_url:
                    sample = dataclasses.replace(sample, artwork_url=artwork_url)

        self._fetched.emit(FetchResult(source, force, sample, denied))

    # ==================================================
    # OWNING THREAD
    # ==================================================

    @Slot(object)
    def _on_fetched(self, result: FetchResult):
        self._fetch_in_flight = False

        if result.permission_message:
            if not self._permission_denied:
                self._permission_denied = True
                self.permission_error.emit(result.permission_message)
        else:
            self._permission_denied = False

        if not self._running:
            return
        if not self.transport.is_ready:
            logger.debug("Discord not ready, holding %s sample", result.source.value)
            return

        update = self.reconciler.apply(result.sample, result.source, result.force)
        if update is not None:
            self._push(update)

    def _push(self, update: PresenceUpdate):
        if not self.transport.is_connected:
            logger.debug("Not connected to Discord, cannot set presence.")
            return
        if not self.transport.send(Opcode.FRAME, payload_for_update(update)):
            return

        if update.clear:
            logger.info("Cleared Discord presence.")
            self.status.emit("Nothing playing")
        else:
            label = f"{update.details} — {update.state}" if update.state else update.details
            logger.info("[RPC] Updated: %s", label)
            self.status.emit(f"{'Playing' if update.start is not None else 'Paused'}: {label}")
        self.presence_pushed.emit(update)

    @Slot()
    def _on_transport_ready(self):
        logger.info("Connected to Discord!")
        self.status.emit("Discord connected ✅")
        self.connected.emit()
        self.trigger_immediate_update()

    @Slot()
    def _on_transport_lost(self):
        logger.info("Discord disconnected.")
        self.status.emit("Discord disconnected")
        self.disconnected.emit()
