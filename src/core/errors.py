# core/errors.py
from __future__ import annotations


class NetEaseError(Exception):
    """Base class for everything the client core raises."""


class TransportError(NetEaseError):
    """Network / timeout / malformed body, after the retry budget is spent."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.cause = cause


class RemoteError(NetEaseError):
    """The service answered with a well-formed envelope whose code is not 200."""

    def __init__(self, code, message: str | None = None):
        self.code = code
        self.message = message or "Unknown error"
        super().__init__(f"API returned error code {code}: {self.message}")


class LoginError(NetEaseError):
    """Unexpected QR login failure (unknown poll status, bad payload, ...)."""

    def __init__(self, message: str, code=None):
        super().__init__(message)
        self.code = code


class SessionExpired(LoginError):
    pass


class ProtocolTimeout(LoginError):
    pass


class ValidationError(NetEaseError):
    pass


class StorageError(NetEaseError):
    pass


class OperationCancelled(NetEaseError):
    pass
