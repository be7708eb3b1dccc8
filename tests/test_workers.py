"""
Tests for the Qt side: AppState signals and the QThread workers.

Workers are exercised by calling run() on the test thread, so signal
handlers fire synchronously and no event loop is needed.
"""

from datetime import timedelta

import pytest

pytest.importorskip("PySide6.QtCore")

from PySide6.QtCore import QCoreApplication

from conftest import T0, ok
from core.config import Config
from core.models import Credential, Song
from core.state import AppState, Notify
from netease.qr_login import QR_KEY_PATH, QR_POLL_PATH
from netease.recommendations import PUBLIC_ENDPOINTS
from netease.service import NetEaseService
from netease.token_store import TokenStore
from ui.workers.login_worker import LoginWorker
from ui.workers.recommendations_worker import RecommendationsWorker


@pytest.fixture(scope="module")
def qapp():
    return QCoreApplication.instance() or QCoreApplication([])


@pytest.fixture
def service(tmp_path, client, clock):
    cfg = Config(app_data_dir=str(tmp_path), poll_interval_s=0, max_poll_attempts=3)
    svc = NetEaseService(cfg, client=client, token_store=TokenStore(cfg.token_path, clock=clock))
    yield svc
    svc.close()


def confirmed():
    return ok({"status": 803, "accessToken": {"accessToken": "acc", "refreshToken": "r", "expireTime": 60}})


class TestLoginWorker:
    """QR payload, state transitions and the final result are all signalled."""

    def test_success(self, qapp, service, client) -> None:
        client.queue(QR_KEY_PATH, ok({"qrCodeUrl": "https://qr/1", "uniKey": "k"}))
        client.queue(QR_POLL_PATH, ok({"status": 801}), ok({"status": 802}), confirmed())

        worker = LoginWorker(service)
        qr, states, results = [], [], []
        worker.qr_ready.connect(qr.append)
        worker.state_changed.connect(states.append)
        worker.login_result.connect(lambda ok_, msg, cred: results.append((ok_, msg, cred)))

        worker.run()

        assert qr == ["https://qr/1"]
        assert states == ["qr_requested", "awaiting_scan", "awaiting_confirmation", "succeeded"]
        assert len(results) == 1
        ok_, _, cred = results[0]
        assert ok_ is True
        assert cred.access_token == "acc"
        assert service.is_logged_in() is True

    def test_expired(self, qapp, service, client) -> None:
        client.queue(QR_KEY_PATH, ok({"qrCodeUrl": "https://qr/1", "uniKey": "k"}))
        client.queue(QR_POLL_PATH, ok({"status": 800}))
        worker = LoginWorker(service)
        results = []
        worker.login_result.connect(lambda ok_, msg, cred: results.append((ok_, msg, cred)))
        worker.run()
        assert results == [(False, "The QR code has expired. Please request a new one.", None)]

    def test_timeout(self, qapp, service, client) -> None:
        client.queue(QR_KEY_PATH, ok({"qrCodeUrl": "https://qr/1", "uniKey": "k"}))
        client.always(QR_POLL_PATH, ok({"status": 801}))
        worker = LoginWorker(service)
        results = []
        worker.login_result.connect(lambda ok_, msg, cred: results.append((ok_, msg)))
        worker.run()
        assert results[0][0] is False
        assert "timed out" in results[0][1]

    def test_cancel_before_run(self, qapp, service, client) -> None:
        """A cancel issued before the thread starts stops the login without polling."""
        client.always(QR_POLL_PATH, ok({"status": 801}))
        worker = LoginWorker(service)
        results = []
        worker.login_result.connect(lambda ok_, msg, cred: results.append((ok_, msg)))
        worker.cancel()
        worker.run()
        assert results == [(False, "Login was cancelled.")]
        assert client.paths() == []
        assert service.is_logged_in() is False

    def test_cancel_during_poll(self, qapp, service, client) -> None:
        client.queue(QR_KEY_PATH, ok({"qrCodeUrl": "https://qr/1", "uniKey": "k"}))
        client.always(QR_POLL_PATH, ok({"status": 801}))
        worker = LoginWorker(service)
        results = []
        worker.login_result.connect(lambda ok_, msg, cred: results.append((ok_, msg)))
        worker.state_changed.connect(lambda s: worker.cancel() if s == "awaiting_scan" else None)
        worker.run()
        assert results == [(False, "Login was cancelled.")]
        assert client.paths() == [QR_KEY_PATH, QR_POLL_PATH]


class TestRecommendationsWorker:
    def test_emits_songs(self, qapp, service, client) -> None:
        client.queue(PUBLIC_ENDPOINTS[0].path, ok(None, result=[{"id": 1, "name": "x"}]))
        worker = RecommendationsWorker(service, limit=5)
        got, progress = [], []
        worker.songs_ready.connect(got.append)
        worker.progress.connect(progress.append)
        worker.run()
        assert [s.name for s in got[0]] == ["x"]
        assert "public" in progress[0]

    def test_total_failure_emits_empty_list(self, qapp, service) -> None:
        worker = RecommendationsWorker(service, limit=5)
        got = []
        worker.songs_ready.connect(got.append)
        worker.run()
        assert got == [[]]


class TestAppState:
    def test_login_status_signal(self, qapp, service) -> None:
        state = AppState(service)
        changes = []
        state.logged_in_changed.connect(changes.append)
        assert state.refresh_login_status() is False
        service.token_store.save(Credential("a", "r", T0 + timedelta(hours=1), T0))
        assert state.refresh_login_status() is True
        assert changes == [True]

    def test_login_result_notifies(self, qapp, service) -> None:
        state = AppState(service)
        notes = []
        state.notification.connect(notes.append)
        state.on_login_result(False, "Login was cancelled.", None)
        assert notes == [Notify(message="Login was cancelled.", notify_type="error")]

    def test_songs_filtered(self, qapp) -> None:
        state = AppState()
        emitted = []
        state.songs_changed.connect(emitted.append)
        state.set_songs([Song("1", "Alpha"), Song("2", "Beta")])
        state.set_search_query("bet")
        assert [s.id for s in emitted[0]] == ["1", "2"]
        assert [s.id for s in emitted[1]] == ["2"]
