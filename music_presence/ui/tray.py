# ui/tray.py
from pathlib import Path

from PySide6.QtCore import QObject, QUrl
from PySide6.QtGui import QDesktopServices, QIcon
from PySide6.QtWidgets import QApplication, QMenu, QMessageBox, QStyle, QSystemTrayIcon

AUTOMATION_SETTINGS_URL = "x-apple.systempreferences:com.apple.preference.security?Privacy_Automation"


class TrayController(QObject):
    """Status icon with the manual controls for a PresenceScheduler."""

    def __init__(self, scheduler, quit_callback=None, parent=None):
        super().__init__(parent)
        self.scheduler = scheduler
        self._quit_callback = quit_callback
        self._icon = self._load_app_icon()

        self.menu = QMenu()
        self.status_action = self.menu.addAction("Starting…")
        self.status_action.setEnabled(False)
        self.menu.addSeparator()
        self.reconnect_action = self.menu.addAction("Reconnect Discord")
        self.update_action = self.menu.addAction("Update Presence Now")
        self.clear_action = self.menu.addAction("Clear Presence")
        self.menu.addSeparator()
        self.quit_action = self.menu.addAction("Quit")

        self.reconnect_action.triggered.connect(self.scheduler.reconnect)
        self.update_action.triggered.connect(self.scheduler.trigger_immediate_update)
        self.clear_action.triggered.connect(self.scheduler.clear)
        self.quit_action.triggered.connect(self._quit)

        self.tray = QSystemTrayIcon(self)
        self.tray.setToolTip("Music Presence")
        if self._icon:
            self.tray.setIcon(self._icon)
        self.tray.setContextMenu(self.menu)

        self.scheduler.status.connect(self._on_status)
        self.scheduler.permission_error.connect(self.show_permission_alert)

    def show(self):
        if QSystemTrayIcon.isSystemTrayAvailable():
            self.tray.show()

    def _on_status(self, msg: str):
        self.status_action.setText(msg)
        self.tray.setToolTip(f"Music Presence — {msg}")

    def show_permission_alert(self, message: str):
        box = QMessageBox()
        box.setIcon(QMessageBox.Critical)
        box.setWindowTitle("Automation Permission Required")
        box.setText("Automation Permission Required")
        box.setInformativeText(message)
        open_button = box.addButton("Open System Settings", QMessageBox.AcceptRole)
        box.addButton("Close", QMessageBox.RejectRole)
        box.exec()
        if box.clickedButton() is open_button:
            QDesktopServices.openUrl(QUrl(AUTOMATION_SETTINGS_URL))

    def _quit(self):
        self.scheduler.stop()
        if self._quit_callback:
            self._quit_callback()

    def _load_app_icon(self):
        icon_path = Path(__file__).resolve().parents[1] / "logo.png"
        if icon_path.exists():
            return QIcon(str(icon_path))
        app = QApplication.instance()
        if app:
            return app.style().standardIcon(QStyle.SP_MediaPlay)
        return None
