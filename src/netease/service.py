from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

from core.config import Config
from core.errors import LoginError
from core.models import Credential, LoginState, QrSession, Song
from netease.openapi_client import OpenApiClient
from netease.qr_login import QrLoginFlow
from netease.recommendations import RecommendationFetcher
from netease.token_store import TokenStore

logger = logging.getLogger(__name__)


class NetEaseService:
    """
    Owns the HTTP client, the token store and at most one in-flight login.
    Create one per application, pass it to whoever needs it, close() it on exit.
    """

    def __init__(
        self,
        config: Config,
        client: OpenApiClient | None = None,
        token_store: TokenStore | None = None,
        fetcher: RecommendationFetcher | None = None,
    ):
        self.config = config
        self.client = client or OpenApiClient(config)
        self.token_store = token_store or TokenStore(config.token_path)
        self.fetcher = fetcher or RecommendationFetcher(self.client, self.token_store)

        self._flow: Optional[QrLoginFlow] = None
        self._lock = threading.Lock()
        self._closed = False

    def __enter__(self) -> "NetEaseService":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.cancel_login()
        self.client.close()

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("NetEaseService is closed")

    # -------------------------------
    # Login
    # -------------------------------
    def new_login_flow(self, on_state_change: Callable[[LoginState], None] | None = None) -> QrLoginFlow:
        self._ensure_open()
        flow = QrLoginFlow(
            self.client,
            self.token_store,
            app_id=self.config.app_id,
            app_access_token=self.config.app_access_token,
            poll_interval_s=self.config.poll_interval_s,
            max_poll_attempts=self.config.max_poll_attempts,
            clock=self.token_store.clock,
            on_state_change=on_state_change,
        )
        with self._lock:
            previous, self._flow = self._flow, flow
        if previous is not None:
            # a new login abandons the old one
            previous.cancel()
        return flow

    def start_login(self, on_state_change: Callable[[LoginState], None] | None = None) -> QrSession:
        return self.new_login_flow(on_state_change).start()

    def wait_for_login(self) -> Credential:
        with self._lock:
            flow = self._flow
        if flow is None or flow.session is None:
            raise LoginError("No login in progress; call start_login() first")
        return flow.poll()

    def cancel_login(self) -> None:
        with self._lock:
            flow, self._flow = self._flow, None
        if flow is not None:
            flow.cancel()

    @property
    def login_state(self) -> LoginState:
        with self._lock:
            flow = self._flow
        return flow.state if flow is not None else LoginState.IDLE

    # -------------------------------
    # Session
    # -------------------------------
    def is_logged_in(self) -> bool:
        return self.token_store.current() is not None

    def current_credential(self) -> Optional[Credential]:
        return self.token_store.current()

    def verify_session(self) -> bool:
        """
        Ask the service whether the stored token still works. A rejected
        token is forgotten; an unreachable service leaves it alone.
        """
        credential = self.token_store.current()
        if credential is None:
            return False
        verdict = self.fetcher.validate_token(credential.access_token)
        if verdict is False:
            logger.info("Stored token is no longer accepted; logging out")
            self.token_store.clear()
            return False
        return True

    def logout(self) -> None:
        self.cancel_login()
        self.token_store.clear()

    # -------------------------------
    # Content
    # -------------------------------
    def fetch_recommendations(self, limit: int | None = None,
                              cancel_event: threading.Event | None = None) -> List[Song]:
        self._ensure_open()
        return self.fetcher.fetch(limit or self.config.recommend_limit, cancel_event=cancel_event)
