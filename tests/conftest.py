"""Shared fixtures: a controllable clock and a scripted stand-in for OpenApiClient."""

from datetime import datetime, timedelta, timezone

import pytest

from core.errors import RemoteError
from netease.openapi_client import Envelope

T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def ok(data=None, **body) -> Envelope:
    full = {"code": 200, **body}
    if data is not None:
        full["data"] = data
    return Envelope(code=200, data=data, message=None, body=full)


class ScriptedClient:
    """
    Replays queued results per path. A queued Exception is raised, anything
    else is returned. Every call is recorded as (method, path, kwargs).
    """

    def __init__(self):
        self.scripts: dict[str, list] = {}
        self.defaults: dict[str, object] = {}
        self.calls: list[tuple[str, str, dict]] = []

    def queue(self, path: str, *results) -> None:
        self.scripts.setdefault(path, []).extend(results)

    def always(self, path: str, result) -> None:
        self.defaults[path] = result

    def _next(self, path: str):
        queued = self.scripts.get(path)
        if queued:
            result = queued.pop(0)
        elif path in self.defaults:
            result = self.defaults[path]
        else:
            raise RemoteError(404, f"no script for {path}")
        if isinstance(result, Exception):
            raise result
        return result

    def request(self, path, biz, **kwargs):
        self.calls.append(("request", path, {"biz": biz, **kwargs}))
        return self._next(path)

    def request_public(self, path, **kwargs):
        self.calls.append(("request_public", path, kwargs))
        return self._next(path)

    def paths(self, method: str | None = None) -> list[str]:
        return [p for m, p, _ in self.calls if method is None or m == method]

    def close(self):
        pass


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def client():
    return ScriptedClient()
