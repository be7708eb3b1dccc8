from __future__ import annotations
from dataclasses import dataclass
from PySide6.QtCore import QObject, Signal, Slot

from core.utils import filter_songs

@dataclass(frozen=True)
class Notify:
    message: str
    notify_type: str = "info"   # info/success/warn/error

class AppState(QObject):
    notification = Signal(object)       # emits Notify
    login_state_changed = Signal(str)   # LoginState.value
    logged_in_changed = Signal(bool)
    songs_changed = Signal(object)      # emits list[Song] after filtering

    def __init__(self, service=None):
        super().__init__()
        self.service = service
        self.app_data_dir: str | None = None
        self.songs: list = []
        self.search_query: str = ""
        self.logged_in = False
        self.queued_notifications: list[Notify] = []

    @Slot(str, str)
    def notify(self, message: str, notify_type: str = "info"):
        self.notification.emit(Notify(message=message, notify_type=notify_type))

    def refresh_login_status(self) -> bool:
        logged_in = bool(self.service is not None and self.service.is_logged_in())
        if logged_in != self.logged_in:
            self.logged_in = logged_in
            self.logged_in_changed.emit(logged_in)
        return logged_in

    @Slot(bool, str, object)
    def on_login_result(self, ok: bool, message: str, _credential=None):
        self.notify(message, "success" if ok else "error")
        self.refresh_login_status()

    @Slot(object)
    def set_songs(self, songs):
        self.songs = list(songs or [])
        self.songs_changed.emit(self.filtered_songs())

    def set_search_query(self, query: str):
        self.search_query = query or ""
        self.songs_changed.emit(self.filtered_songs())

    def filtered_songs(self) -> list:
        return filter_songs(self.songs, self.search_query)
