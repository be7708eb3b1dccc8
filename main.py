import argparse
import json
import logging
import os
import signal
import sys
from dataclasses import asdict
from pathlib import Path

from PySide6.QtCore import QCoreApplication, QStandardPaths, QTimer

ROOT = Path(__file__).resolve().parent
SRC_DIR = ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from core.config import load_config
from core.state import AppState, Notify
from netease.service import NetEaseService
from ui.workers.login_worker import LoginWorker
from ui.workers.recommendations_worker import RecommendationsWorker

APP_NAME = "CloudMusicClient"

def get_app_data_dir() -> str:
    base = QStandardPaths.writableLocation(QStandardPaths.AppDataLocation)
    os.makedirs(base, exist_ok=True)
    return base

def init_app_state(data_dir: str | None = None) -> AppState:
    app_data_dir = data_dir or get_app_data_dir()
    os.makedirs(app_data_dir, exist_ok=True)

    config = load_config(app_data_dir)
    app_state = AppState(NetEaseService(config))
    app_state.app_data_dir = app_data_dir
    app_state.refresh_login_status()

    if os.getenv("NETEASE_VERIFY_SESSION") == "1" and app_state.logged_in:
        if not app_state.service.verify_session():
            app_state.queued_notifications.append(
                Notify(message="Stored login was rejected by the server; please log in again.", notify_type="warn")
            )
        app_state.refresh_login_status()

    return app_state

def print_notification(n: Notify) -> None:
    stream = sys.stderr if n.notify_type in ("error", "warn") else sys.stdout
    print(f"[{n.notify_type}] {n.message}", file=stream)

def print_songs(songs, as_json: bool) -> None:
    if as_json:
        print(json.dumps([asdict(s) for s in songs], ensure_ascii=False, indent=2))
        return
    if not songs:
        print("No songs.")
        return
    for i, s in enumerate(songs, 1):
        flag = " [restricted]" if s.is_restricted else ""
        print(f"{i:>3}. {s.name} - {s.artists_text} ({s.duration_text}){flag}")

def run_login(qt_app: QCoreApplication, app_state: AppState) -> int:
    result = {"code": 1}
    worker = LoginWorker(app_state.service)

    def on_qr(payload: str):
        print("Scan this QR payload with the NetEase Cloud Music app:")
        print(payload)

    def on_result(ok: bool, message: str, credential):
        app_state.on_login_result(ok, message, credential)
        result["code"] = 0 if ok else 1

    worker.qr_ready.connect(on_qr)
    worker.state_changed.connect(app_state.login_state_changed.emit)
    worker.login_result.connect(on_result)
    worker.finished.connect(qt_app.quit)
    app_state.login_state_changed.connect(lambda s: logging.getLogger(APP_NAME).info("Login state: %s", s))

    # Ctrl+C only reaches Python between Qt events; the timer keeps them coming
    previous_handler = signal.signal(signal.SIGINT, lambda *_: worker.cancel())
    tick = QTimer()
    tick.timeout.connect(lambda: None)
    tick.start(200)

    worker.start()
    try:
        qt_app.exec()
    finally:
        tick.stop()
        signal.signal(signal.SIGINT, previous_handler)
    worker.wait()
    return result["code"]

def run_recommend(qt_app: QCoreApplication, app_state: AppState, limit: int | None,
                  query: str | None, as_json: bool) -> int:
    worker = RecommendationsWorker(app_state.service, limit)
    app_state.set_search_query(query or "")

    app_state.songs_changed.connect(lambda songs: print_songs(songs, as_json))
    worker.progress.connect(lambda msg: print(msg, file=sys.stderr))
    worker.songs_ready.connect(app_state.set_songs)
    worker.finished.connect(qt_app.quit)

    worker.start()
    qt_app.exec()
    worker.wait()
    return 0

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cloudmusic", description="NetEase Cloud Music QR login and recommendations")
    parser.add_argument("--data-dir", help="Directory holding auth_tokens.json (default: platform app data dir)")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("login", help="Log in by scanning a QR code")

    rec = sub.add_parser("recommend", help="Print recommended songs")
    rec.add_argument("--limit", type=int, default=None)
    rec.add_argument("--filter", dest="query", default=None, help="Only songs whose title/artist/album match")
    rec.add_argument("--json", action="store_true")

    sub.add_parser("status", help="Show whether a valid login is stored")
    sub.add_parser("logout", help="Forget the stored login")
    return parser

def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    level = logging.DEBUG if args.verbose else os.getenv("NETEASE_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    qt_app = QCoreApplication(sys.argv[:1])
    qt_app.setApplicationName(APP_NAME)

    app_state = init_app_state(args.data_dir)
    app_state.notification.connect(print_notification)
    for n in app_state.queued_notifications:
        print_notification(n)

    try:
        if args.command == "login":
            return run_login(qt_app, app_state)
        if args.command == "recommend":
            return run_recommend(qt_app, app_state, args.limit, args.query, args.json)
        if args.command == "status":
            cred = app_state.service.current_credential()
            if cred is None:
                print("Not logged in.")
                return 1
            print(f"Logged in; token expires {cred.expires_at.isoformat()}")
            return 0
        if args.command == "logout":
            app_state.service.logout()
            app_state.refresh_login_status()
            print("Logged out.")
            return 0
        return 2
    finally:
        app_state.service.close()

if __name__ == "__main__":
    raise SystemExit(main())
