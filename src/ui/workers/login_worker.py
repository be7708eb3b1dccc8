# ui/workers/login_worker.py
from __future__ import annotations

import threading

from PySide6.QtCore import QThread, Signal

from core.errors import NetEaseError, OperationCancelled
from core.models import LoginState
from netease.qr_login import describe_login_error


class LoginWorker(QThread):
    qr_ready = Signal(str)              # QR payload (URL) to render
    state_changed = Signal(str)         # LoginState.value
    login_result = Signal(bool, str, object)  # ok, msg, Credential | None

    def __init__(self, service, parent=None):
        super().__init__(parent)
        self.service = service
        self.flow = None
        self._cancelled = threading.Event()

    def cancel(self):
        # may arrive before run() has built the flow
        self._cancelled.set()
        if self.flow is not None:
            self.flow.cancel()

    def _on_state(self, state: LoginState):
        self.state_changed.emit(state.value)

    def run(self):
        try:
            self.flow = self.service.new_login_flow(on_state_change=self._on_state)
            if self._cancelled.is_set():
                self.flow.cancel()
                raise OperationCancelled("Login cancelled")

            session = self.flow.start()
            self.qr_ready.emit(session.qr_payload)

            credential = self.flow.poll()
            self.login_result.emit(True, "Login successful!", credential)
        except NetEaseError as e:
            # expired / timed out / cancelled / unexpected get distinct wording
            self.login_result.emit(False, describe_login_error(e), None)
        except Exception as e:
            self.login_result.emit(False, f"Login failed: {e}", None)
