from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from datetime import datetime
from typing import Callable, Optional

from core.errors import StorageError
from core.models import Credential
from core.utils import from_epoch_s, to_epoch_s, utcnow

logger = logging.getLogger(__name__)


def is_valid(credential: Credential | None, now: datetime) -> bool:
    # exclusive: a credential is dead at the instant it expires
    return credential is not None and credential.expires_at > now


def credential_to_record(credential: Credential) -> dict:
    return {
        "access_token": credential.access_token,
        "refresh_token": credential.refresh_token,
        "expires_at": to_epoch_s(credential.expires_at),
        "saved_at": to_epoch_s(credential.saved_at),
    }


def credential_from_record(record: dict) -> Credential:
    """
    Two on-disk shapes are understood:

    - current: {"access_token", "refresh_token", "expires_at", "saved_at"},
      both instants absolute Unix seconds;
    - legacy: {"AccessToken", "RefreshToken", "ExpiresIn", "SavedAt"}, where
      ExpiresIn is a lifetime relative to SavedAt. It is resolved here, once,
      and the result is always written back absolute.
    """
    if not isinstance(record, dict):
        raise StorageError("Token record is not a JSON object")

    try:
        if "access_token" in record:
            access = record["access_token"]
            refresh = record.get("refresh_token") or ""
            expires_at = from_epoch_s(record["expires_at"])
            saved_at = from_epoch_s(record.get("saved_at", record["expires_at"]))
        elif "AccessToken" in record:
            access = record["AccessToken"]
            refresh = record.get("RefreshToken") or ""
            saved_at = from_epoch_s(record["SavedAt"])
            expires_at = from_epoch_s(float(record["SavedAt"]) + float(record["ExpiresIn"]))
        else:
            raise StorageError("Token record has no access token")
    except (KeyError, TypeError, ValueError, OverflowError, OSError) as e:
        raise StorageError(f"Token record is malformed: {e}") from e

    if not isinstance(access, str) or not access:
        raise StorageError("Token record has an empty access token")

    return Credential(
        access_token=access,
        refresh_token=str(refresh),
        expires_at=expires_at,
        saved_at=saved_at,
    )


class TokenStore:
    """
    One JSON file holding the current Credential, plus an in-memory copy.

    The cache is only ever replaced whole; readers never see a half-updated
    credential. Anything unreadable on disk counts as "not logged in".
    """

    def __init__(self, path: str, clock: Callable[[], datetime] = utcnow):
        self.path = path
        self.clock = clock
        self._lock = threading.RLock()
        self._cached: Optional[Credential] = None
        self._loaded = False

    def is_valid(self, credential: Credential | None, now: datetime | None = None) -> bool:
        return is_valid(credential, now or self.clock())

    # -------------------------------
    # Disk
    # -------------------------------
    def load(self, now: datetime | None = None) -> Optional[Credential]:
        with self._lock:
            try:
                credential = self._read()
            except StorageError as e:
                logger.warning("Discarding stored token: %s", e)
                self._delete_file()
                return None

            if credential is None:
                return None

            if not self.is_valid(credential, now):
                logger.info("Stored token expired at %s; removing it", credential.expires_at.isoformat())
                self._delete_file()
                return None

            return credential

    def save(self, credential: Credential) -> None:
        with self._lock:
            self._cached = credential
            self._loaded = True
            self._write(credential_to_record(credential))
            logger.info("Token saved to %s (expires %s)", self.path, credential.expires_at.isoformat())

    def clear(self) -> None:
        with self._lock:
            self._cached = None
            self._loaded = True
            self._delete_file()

    def _read(self) -> Optional[Credential]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                text = f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Cannot read {self.path}: {e}") from e

        if not text.strip():
            raise StorageError("Token file is empty")
        try:
            record = json.loads(text)
        except ValueError as e:
            raise StorageError(f"Token file is not JSON: {e}") from e
        return credential_from_record(record)

    def _write(self, record: dict) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        tmp_path = None
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=".auth_", suffix=".tmp", dir=directory)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(record, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except OSError as e:
            if tmp_path and os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise StorageError(f"Cannot write {self.path}: {e}") from e

    def _delete_file(self) -> None:
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Could not delete %s: %s", self.path, e)

    # -------------------------------
    # Cache
    # -------------------------------
    def current(self, now: datetime | None = None) -> Optional[Credential]:
        """Cached credential if still valid; first call reads the file."""
        with self._lock:
            if not self._loaded:
                self._cached = self.load(now)
                self._loaded = True

            if self._cached is not None and not self.is_valid(self._cached, now):
                logger.info("Cached token expired; dropping it")
                self._cached = None
                self._delete_file()

            return self._cached

    def invalidate(self) -> None:
        # next current() goes back to disk
        with self._lock:
            self._cached = None
            self._loaded = False
