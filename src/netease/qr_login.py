r"""
QR-code device login.

    IDLE -> QR_REQUESTED -> AWAITING_SCAN -> AWAITING_CONFIRMATION -> SUCCEEDED
                                                                   \-> EXPIRED | FAILED

`QrLoginFlow` is a plain object: `start()` issues the QR session, `step()`
performs exactly one poll, `poll()` is the default driver (fixed interval,
bounded attempts). Any other scheduler (a QTimer, a test loop) can call
`step()` itself. One instance covers one attempt; retrying needs a new one.
"""
from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Optional

from core.errors import (
    LoginError,
    NetEaseError,
    OperationCancelled,
    ProtocolTimeout,
    RemoteError,
    SessionExpired,
    StorageError,
    TransportError,
)
from core.models import Credential, LoginState, QrSession
from core.utils import utcnow

logger = logging.getLogger(__name__)

QR_KEY_PATH = "/openapi/music/basic/user/oauth2/qrcodekey/get/v2"
QR_POLL_PATH = "/openapi/music/basic/oauth2/device/login/qrcode/get"

STATUS_EXPIRED = 800
STATUS_WAITING_SCAN = 801
STATUS_SCANNED = 802
STATUS_CONFIRMED = 803

# Anything above this cannot be a lifetime in seconds (> ~31 years);
# it is a millisecond value and gets divided by 1000.
MS_SCALE_THRESHOLD = 999_999_999


def normalize_expires_in(value) -> int:
    if isinstance(value, bool) or value is None:
        raise LoginError(f"Invalid expireTime: {value!r}")
    try:
        seconds = int(float(value))
    except (TypeError, ValueError):
        raise LoginError(f"Invalid expireTime: {value!r}") from None
    if seconds > MS_SCALE_THRESHOLD:
        seconds //= 1000
    return max(0, seconds)


def describe_login_error(exc: BaseException) -> str:
    if isinstance(exc, SessionExpired):
        return "The QR code has expired. Please request a new one."
    if isinstance(exc, ProtocolTimeout):
        return "Login timed out waiting for confirmation. Please request a new QR code."
    if isinstance(exc, OperationCancelled):
        return "Login was cancelled."
    if isinstance(exc, TransportError):
        return f"Could not reach the login service: {exc}"
    return f"Login failed with an unexpected error: {exc}"


class QrLoginFlow:
    def __init__(
        self,
        client,
        token_store,
        *,
        app_id: str,
        app_access_token: str | None = None,
        poll_interval_s: float = 2.0,
        max_poll_attempts: int = 150,
        clock: Callable[[], datetime] = utcnow,
        on_state_change: Callable[[LoginState], None] | None = None,
    ):
        self.client = client
        self.token_store = token_store
        self.app_id = app_id
        self.app_access_token = app_access_token or None
        self.poll_interval_s = poll_interval_s
        self.max_poll_attempts = max_poll_attempts
        self.clock = clock
        self.on_state_change = on_state_change

        self.state = LoginState.IDLE
        self.session: Optional[QrSession] = None
        self.credential: Optional[Credential] = None
        self.attempts = 0
        self.cancelled = False
        self._cancel = threading.Event()

    # ----------------------------
    # State
    # ----------------------------

    def _set_state(self, state: LoginState) -> None:
        if state is self.state:
            return
        logger.info("QR login: %s -> %s", self.state.value, state.value)
        self.state = state
        if self.session is not None:
            self.session.state = state
        if self.on_state_change is not None:
            self.on_state_change(state)

    def _fail(self, exc: NetEaseError, state: LoginState = LoginState.FAILED) -> NetEaseError:
        self._set_state(state)
        return exc

    def cancel(self) -> None:
        self.cancelled = True
        self._cancel.set()

    def _check_cancel(self) -> None:
        if self._cancel.is_set():
            self.cancelled = True
            raise OperationCancelled("Login cancelled")

    def _check_usable(self) -> None:
        if self.cancelled:
            raise LoginError("This login flow was cancelled; start a new one")
        if self.state.is_terminal:
            raise LoginError(f"This login flow already finished ({self.state.value}); start a new one")

    # ----------------------------
    # QR issuance
    # ----------------------------

    def start(self) -> QrSession:
        self._check_usable()
        if self.state is not LoginState.IDLE:
            raise LoginError("QR session already issued for this flow")
        self._check_cancel()

        try:
            env = self.client.request(
                QR_KEY_PATH,
                {"type": 2, "expiredKey": "300"},
                cancel_event=self._cancel,
            )
        except OperationCancelled:
            self.cancelled = True
            raise
        except RemoteError as e:
            raise self._fail(LoginError(f"QR code request rejected: {e}", code=e.code)) from e
        except TransportError as e:
            raise self._fail(e)

        data = env.data if isinstance(env.data, dict) else {}
        qr_url = data.get("qrCodeUrl")
        uni_key = data.get("uniKey")
        if not qr_url or not uni_key:
            raise self._fail(LoginError("QR code response is missing qrCodeUrl/uniKey"))

        self.session = QrSession(
            qr_payload=str(qr_url),
            session_key=str(uni_key),
            created_at=self.clock(),
        )
        self._set_state(LoginState.QR_REQUESTED)
        return self.session

    # ----------------------------
    # Polling
    # ----------------------------

    def step(self) -> LoginState:
        """One poll attempt. Raises on terminal failure; returns the new state otherwise."""
        if self.session is None:
            raise LoginError("start() must succeed before polling")
        self._check_usable()
        self._check_cancel()

        self.attempts += 1
        try:
            env = self.client.request(
                QR_POLL_PATH,
                {"key": self.session.session_key, "clientId": self.app_id},
                access_token=self.app_access_token,
                cancel_event=self._cancel,
                max_attempts=1,
            )
        except OperationCancelled:
            self.cancelled = True
            raise
        except TransportError as e:
            # the poll budget absorbs network hiccups
            logger.warning("Poll attempt %d failed: %s", self.attempts, e)
            return self.state
        except RemoteError as e:
            raise self._fail(LoginError(f"Login poll rejected: {e}", code=e.code)) from e

        data = env.data if isinstance(env.data, dict) else {}
        status = data.get("status")
        try:
            status = int(status)
        except (TypeError, ValueError):
            raise self._fail(LoginError(f"Unexpected status code: {status!r}", code=status)) from None

        if status == STATUS_EXPIRED:
            raise self._fail(SessionExpired("QR code has expired", code=status), LoginState.EXPIRED)
        if status == STATUS_WAITING_SCAN:
            self._set_state(LoginState.AWAITING_SCAN)
            return self.state
        if status == STATUS_SCANNED:
            self._set_state(LoginState.AWAITING_CONFIRMATION)
            return self.state
        if status == STATUS_CONFIRMED:
            self._complete(data)
            return self.state

        raise self._fail(LoginError(f"Unexpected status code: {status}", code=status))

    def _complete(self, data: dict) -> None:
        token = data.get("accessToken")
        if not isinstance(token, dict):
            raise self._fail(LoginError("Confirmed login carried no token", code=STATUS_CONFIRMED))

        access = token.get("accessToken")
        if not access:
            raise self._fail(LoginError("Confirmed login carried an empty access token", code=STATUS_CONFIRMED))

        try:
            expires_in = normalize_expires_in(token.get("expireTime", token.get("expiresIn")))
        except LoginError as e:
            raise self._fail(e)

        now = self.clock()
        self.credential = Credential(
            access_token=str(access),
            refresh_token=str(token.get("refreshToken") or ""),
            expires_at=now + timedelta(seconds=expires_in),
            saved_at=now,
        )

        try:
            self.token_store.save(self.credential)
        except StorageError:
            # still logged in for this session
            logger.exception("Could not persist login token")

        self._set_state(LoginState.SUCCEEDED)

    def poll(self) -> Credential:
        while self.attempts < self.max_poll_attempts:
            self._check_cancel()

            state = self.step()
            if state is LoginState.SUCCEEDED:
                return self.credential

            if self.attempts < self.max_poll_attempts:
                if self._cancel.wait(self.poll_interval_s):
                    self.cancelled = True
                    raise OperationCancelled("Login cancelled")

        raise self._fail(ProtocolTimeout(
            f"Login polling timed out after {self.max_poll_attempts} attempts"
        ))

    def run(self, on_qr: Callable[[QrSession], None] | None = None) -> Credential:
        session = self.start()
        if on_qr is not None:
            on_qr(session)
        return self.poll()
