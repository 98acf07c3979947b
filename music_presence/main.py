#main.py
import signal
import sys

from PySide6.QtCore import QCoreApplication, QTimer

from music_presence.core.config import PresenceConfig
from music_presence.core.debug import setup_logging
from music_presence.core.scheduler import PresenceScheduler
from music_presence.core.sources import get_default_source


def main():
    setup_logging()
    source = get_default_source()
    if source is None:
        print("[Music] Unsupported OS (Apple Music automation needs macOS).")
        return

    app = QCoreApplication(sys.argv)
    scheduler = PresenceScheduler(source, PresenceConfig.from_env())
    scheduler.status.connect(lambda msg: print(f"[Music] {msg}"))
    scheduler.permission_error.connect(lambda msg: print(f"[Music] {msg}", file=sys.stderr))

    signal.signal(signal.SIGINT, lambda *_: app.quit())
    # Qt's loop never yields to Python otherwise, so Ctrl+C would wait forever.
    heartbeat = QTimer()
    heartbeat.start(250)
    heartbeat.timeout.connect(lambda: None)

    app.aboutToQuit.connect(scheduler.shutdown)
    print("[Music] Watching Apple Music… (Ctrl+C to stop)")
    scheduler.start()
    sys.exit(app.exec())


if __name__ == "__main__":
    main()
