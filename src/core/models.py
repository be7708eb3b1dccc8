# core/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class LoginState(Enum):
    IDLE = "idle"
    QR_REQUESTED = "qr_requested"
    AWAITING_SCAN = "awaiting_scan"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    SUCCEEDED = "succeeded"
    EXPIRED = "expired"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (LoginState.SUCCEEDED, LoginState.EXPIRED, LoginState.FAILED)


@dataclass(frozen=True)
class Credential:
    access_token: str
    refresh_token: str
    expires_at: datetime    # absolute, tz-aware UTC
    saved_at: datetime


@dataclass
class QrSession:
    qr_payload: str         # URL the user's phone app scans
    session_key: str        # "uniKey" on the wire
    created_at: datetime
    state: LoginState = LoginState.QR_REQUESTED


@dataclass(frozen=True)
class Artist:
    id: str
    name: str


@dataclass(frozen=True)
class Album:
    id: str = ""
    name: str = ""
    cover_url: str = ""


@dataclass(frozen=True)
class Song:
    id: str
    name: str
    duration_ms: int = 0
    artists: tuple[Artist, ...] = ()
    album: Album = field(default_factory=Album)
    is_restricted: bool = False
    tags: tuple[str, ...] = ()

    @property
    def artists_text(self) -> str:
        names = [a.name for a in self.artists if a.name]
        return ", ".join(names) if names else "Unknown Artist"

    @property
    def duration_text(self) -> str:
        total_s = self.duration_ms // 1000
        hours, rem = divmod(total_s, 3600)
        minutes, seconds = divmod(rem, 60)
        if hours:
            return f"{hours}:{minutes:02d}:{seconds:02d}"
        return f"{minutes}:{seconds:02d}"

    @property
    def tags_text(self) -> str:
        return " · ".join(self.tags)
