# core/config.py
from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, replace

DEFAULT_DEVICE = {
    "deviceType": "andrwear",
    "os": "otos",
    "appVer": "0.1",
    "channel": "hm",
    "model": "kys",
    "deviceId": "357",
    "brand": "hm",
    "osVer": "8.1.0",
}


@dataclass(frozen=True)
class Config:
    app_data_dir: str = "."

    openapi_base: str = "http://openapi.music.163.com"
    public_api_base: str = "https://music.163.com/api"

    # Signing material is supplied from outside; nothing here is computed.
    app_id: str = "a301010000000000aadb4e5a28b45a67"
    sign_type: str = "RSA_SHA256"
    app_secret: str = ""
    app_access_token: str = ""
    device: dict = field(default_factory=lambda: dict(DEFAULT_DEVICE))

    user_agent: str = "Mozilla/5.0 (Windows NT 10.0; Win64; x64)"
    referer: str = "https://music.163.com/"

    http_timeout_s: float = 30.0
    retry_attempts: int = 3
    retry_delay_s: float = 1.0

    poll_interval_s: float = 2.0
    max_poll_attempts: int = 150

    token_file_name: str = "auth_tokens.json"
    recommend_limit: int = 35

    @property
    def token_path(self) -> str:
        return os.path.join(self.app_data_dir, self.token_file_name)

    def device_json(self) -> str:
        return json.dumps(self.device, separators=(",", ":"))


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_int(name: str, default: int) -> int:
    return int(_env_float(name, default))


def load_config(app_data_dir: str, base: Config | None = None) -> Config:
    """
    Build the runtime config: defaults, then NETEASE_* environment overrides.
    """
    cfg = base or Config()
    overrides = {"app_data_dir": app_data_dir}

    for env_name, attr in (
        ("NETEASE_OPENAPI_BASE", "openapi_base"),
        ("NETEASE_PUBLIC_API_BASE", "public_api_base"),
        ("NETEASE_APP_ID", "app_id"),
        ("NETEASE_SIGN_TYPE", "sign_type"),
        ("NETEASE_APP_SECRET", "app_secret"),
        ("NETEASE_APP_ACCESS_TOKEN", "app_access_token"),
        ("NETEASE_USER_AGENT", "user_agent"),
    ):
        value = os.getenv(env_name)
        if value:
            overrides[attr] = value

    device_raw = os.getenv("NETEASE_DEVICE_JSON")
    if device_raw:
        device = json.loads(device_raw)
        if not isinstance(device, dict):
            raise ValueError("NETEASE_DEVICE_JSON must be a JSON object")
        overrides["device"] = device

    overrides["http_timeout_s"] = _env_float("NETEASE_HTTP_TIMEOUT", cfg.http_timeout_s)
    overrides["retry_attempts"] = max(1, _env_int("NETEASE_RETRY_ATTEMPTS", cfg.retry_attempts))
    overrides["retry_delay_s"] = _env_float("NETEASE_RETRY_DELAY", cfg.retry_delay_s)
    overrides["poll_interval_s"] = _env_float("NETEASE_POLL_INTERVAL", cfg.poll_interval_s)
    overrides["max_poll_attempts"] = max(1, _env_int("NETEASE_MAX_POLL_ATTEMPTS", cfg.max_poll_attempts))

    return replace(cfg, **overrides)
