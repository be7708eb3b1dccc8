# ui/workers/recommendations_worker.py
import threading

from PySide6.QtCore import QThread, Signal


class RecommendationsWorker(QThread):
    progress = Signal(str)
    songs_ready = Signal(object)   # list[Song]; empty on total failure

    def __init__(self, service, limit: int | None = None, parent=None):
        super().__init__(parent)
        self.service = service
        self.limit = limit
        self._cancel = threading.Event()

    def cancel(self):
        self._cancel.set()

    def run(self):
        if self.service.is_logged_in():
            self.progress.emit("Loading personalized recommendations...")
        else:
            self.progress.emit("Not logged in; loading public recommendations...")

        # fetch() swallows tier errors itself
        songs = self.service.fetch_recommendations(self.limit, cancel_event=self._cancel)
        self.songs_ready.emit(songs)
