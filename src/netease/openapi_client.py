from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Optional

import requests

from core.config import Config
from core.errors import OperationCancelled, RemoteError, TransportError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Envelope:
    code: int
    data: Any
    message: Optional[str]
    body: dict          # whole decoded response; public endpoints put songs outside "data"


class MalformedResponse(ValueError):
    pass


def parse_envelope(text: str) -> Envelope:
    """
    Decode a `{code, data, message}` envelope.

    Raises MalformedResponse for anything that is not a JSON object carrying a
    `code`, and RemoteError for a well-formed envelope with code != 200.
    """
    try:
        body = json.loads(text)
    except ValueError as e:
        raise MalformedResponse(f"Response is not JSON: {e}") from e

    if not isinstance(body, dict) or "code" not in body:
        raise MalformedResponse("Response has no 'code' field")

    try:
        code = int(body["code"])
    except (TypeError, ValueError):
        raise MalformedResponse(f"Non-numeric code: {body['code']!r}") from None

    message = body.get("message") or body.get("msg")
    if code != 200:
        raise RemoteError(code, message)

    return Envelope(code=code, data=body.get("data"), message=message, body=body)


class OpenApiClient:
    def __init__(self, config: Config, session: requests.Session | None = None, sleep=None):
        self.config = config
        self.openapi_base = config.openapi_base.rstrip("/")
        self.public_base = config.public_api_base.rstrip("/")
        self.timeout = config.http_timeout_s
        self.max_attempts = max(1, config.retry_attempts)
        self.retry_delay_s = config.retry_delay_s

        self.session = session or requests.Session()
        self.session.headers.update({
            "User-Agent": config.user_agent,
            "Referer": config.referer,
            "Accept": "application/json",
        })
        # only used when no cancel event is supplied
        self._sleep = sleep or time.sleep

    def close(self) -> None:
        self.session.close()

    # ----------------------------
    # Query building
    # ----------------------------

    def signed_params(self, biz: dict, access_token: str | None = None, timestamp_ms: int | None = None) -> dict:
        # Signature material is taken as configured; no signing happens here.
        params = {
            "appId": self.config.app_id,
            "bizContent": json.dumps(biz, ensure_ascii=False, separators=(",", ":")),
            "signType": self.config.sign_type,
            "device": self.config.device_json(),
            "timestamp": str(timestamp_ms if timestamp_ms is not None else int(time.time() * 1000)),
        }
        if self.config.app_secret:
            params["appSecret"] = self.config.app_secret
        if access_token:
            params["accessToken"] = access_token
        return params

    # ----------------------------
    # Requests
    # ----------------------------

    def request(
        self,
        path: str,
        biz: dict,
        *,
        access_token: str | None = None,
        cancel_event: threading.Event | None = None,
        max_attempts: int | None = None,
    ) -> Envelope:
        """Signed call against the open API host."""
        url = f"{self.openapi_base}{path}"

        def send() -> requests.Response:
            # fresh timestamp per attempt
            params = self.signed_params(biz, access_token=access_token)
            return self.session.post(url, params=params, timeout=self.timeout)

        return self._with_retries(path, send, cancel_event, max_attempts)

    def request_public(
        self,
        path: str,
        *,
        params: dict | None = None,
        data: dict | None = None,
        cancel_event: threading.Event | None = None,
        max_attempts: int | None = None,
    ) -> Envelope:
        """Unsigned call against the public web API. `data` switches to a form POST."""
        url = f"{self.public_base}{path}"

        def send() -> requests.Response:
            if data is not None:
                return self.session.post(url, params=params, data=data, timeout=self.timeout)
            return self.session.get(url, params=params, timeout=self.timeout)

        return self._with_retries(path, send, cancel_event, max_attempts)

    def _with_retries(self, path, send, cancel_event, max_attempts) -> Envelope:
        attempts = max(1, max_attempts or self.max_attempts)
        last_exc: Exception | None = None

        for attempt in range(1, attempts + 1):
            self._check_cancel(cancel_event)
            try:
                r = send()
                r.raise_for_status()
                return parse_envelope(r.text)
            except (requests.RequestException, MalformedResponse) as e:
                last_exc = e
                logger.warning("%s attempt %d/%d failed: %s", path, attempt, attempts, e)

            if attempt < attempts:
                self._delay(self.retry_delay_s * attempt, cancel_event)

        raise TransportError(f"{path} failed after {attempts} attempts", cause=last_exc) from last_exc

    def _delay(self, seconds: float, cancel_event: threading.Event | None) -> None:
        if cancel_event is None:
            self._sleep(seconds)
            return
        self._check_cancel(cancel_event)
        if cancel_event.wait(seconds):
            raise OperationCancelled("Request cancelled")

    @staticmethod
    def _check_cancel(cancel_event: threading.Event | None) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelled("Request cancelled")
