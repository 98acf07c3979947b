import sys

from PySide6.QtWidgets import QApplication

from music_presence.core.config import PresenceConfig
from music_presence.core.debug import setup_logging
from music_presence.core.scheduler import PresenceScheduler
from music_presence.core.sources import get_default_source
from music_presence.ui.tray import TrayController


def main():
    setup_logging()
    source = get_default_source()
    if source is None:
        print("[Music] Unsupported OS (Apple Music automation needs macOS).")
        return

    app = QApplication(sys.argv)
    app.setQuitOnLastWindowClosed(False)

    scheduler = PresenceScheduler(source, PresenceConfig.from_env())
    tray = TrayController(scheduler, quit_callback=app.quit)
    tray.show()

    app.aboutToQuit.connect(scheduler.shutdown)
    scheduler.start()
    sys.exit(app.exec())


if __name__ == "__main__":
    main()
