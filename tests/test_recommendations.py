"""
Tests for the tiered RecommendationFetcher.
"""

import random
from datetime import timedelta

from conftest import T0, ok
from core.errors import RemoteError, TransportError
from core.models import Credential
from netease.openapi_client import Envelope
from netease.recommendations import (
    PERSONALIZED_PATH,
    PUBLIC_ENDPOINTS,
    SEARCH_PATH,
    SEARCH_TERMS,
    RecommendationFetcher,
)


class StubStore:
    def __init__(self, credential=None):
        self.credential = credential
        self.calls = 0

    def current(self, now=None):
        self.calls += 1
        return self.credential


def logged_in():
    return StubStore(Credential("user-token", "r", T0 + timedelta(days=30), T0))


def songs_json(n, start=0, short=False):
    if short:
        return [{"id": i, "name": f"song {i}", "dt": 1000, "ar": [{"id": 1, "name": "A"}]}
                for i in range(start, start + n)]
    return [{"id": str(i), "name": f"song {i}", "duration": 1000} for i in range(start, start + n)]


def public(body):
    return Envelope(code=200, data=body.get("data"), message=None, body={"code": 200, **body})


NEWSONG, TOP, RECOMMEND, PERSONALIZED = (e.path for e in PUBLIC_ENDPOINTS)


class TestTierOrder:
    """First tier with >= 1 song wins; later tiers are never called."""

    def test_personalized_success_skips_everything_else(self, client) -> None:
        client.queue(PERSONALIZED_PATH, ok(songs_json(5)))
        songs = RecommendationFetcher(client, logged_in()).fetch(30)
        assert len(songs) == 5
        assert client.paths("request_public") == []

    def test_personalized_request(self, client) -> None:
        client.queue(PERSONALIZED_PATH, ok(songs_json(1)))
        RecommendationFetcher(client, logged_in()).fetch(100)
        _, path, kwargs = client.calls[0]
        assert path == PERSONALIZED_PATH
        assert kwargs["biz"] == {"limit": 40, "qualityFlag": True}
        assert kwargs["access_token"] == "user-token"

    def test_personalized_failure_then_first_public(self, client) -> None:
        client.queue(PERSONALIZED_PATH, RemoteError(401, "expired"))
        client.queue(NEWSONG, public({"result": songs_json(3, short=True)}))
        songs = RecommendationFetcher(client, logged_in()).fetch(30)
        assert [s.id for s in songs] == ["0", "1", "2"]
        assert client.paths("request_public") == [NEWSONG]

    def test_unauthenticated_skips_personalized_call(self, client) -> None:
        """No stored credential: straight to public tiers."""
        client.queue(NEWSONG, public({"result": songs_json(2)}))
        store = StubStore(None)
        songs = RecommendationFetcher(client, store).fetch(10)
        assert len(songs) == 2
        assert client.paths("request") == []
        assert store.calls == 1

    def test_public_tiers_in_order(self, client) -> None:
        client.queue(NEWSONG, TransportError("down"))
        client.queue(TOP, public({"data": []}))
        client.queue(RECOMMEND, public({"data": songs_json(4)}))
        songs = RecommendationFetcher(client, StubStore()).fetch(10)
        assert len(songs) == 4
        assert client.paths() == [NEWSONG, TOP, RECOMMEND]

    def test_search_fallback(self, client) -> None:
        for e in PUBLIC_ENDPOINTS:
            client.queue(e.path, public({"code": 200}))
        client.queue(SEARCH_PATH, public({"result": {"songs": songs_json(3, short=True)}}))
        fetcher = RecommendationFetcher(client, StubStore(), rng=random.Random(7))
        songs = fetcher.fetch(10)
        assert len(songs) == 3
        assert client.paths()[-1] == SEARCH_PATH
        _, _, kwargs = client.calls[-1]
        assert kwargs["data"]["s"] in SEARCH_TERMS
        assert kwargs["data"]["type"] == 1
        assert kwargs["data"]["limit"] == 10

    def test_total_failure_is_empty_list(self, client) -> None:
        """Every tier failing yields [] and never raises."""
        songs = RecommendationFetcher(client, logged_in()).fetch(10)
        assert songs == []
        assert client.paths() == [PERSONALIZED_PATH] + [e.path for e in PUBLIC_ENDPOINTS] + [SEARCH_PATH]

    def test_store_error_is_absorbed(self, client) -> None:
        class Broken:
            def current(self):
                raise OSError("disk gone")

        client.queue(NEWSONG, public({"result": songs_json(1)}))
        assert len(RecommendationFetcher(client, Broken()).fetch(5)) == 1

    def test_zero_limit(self, client) -> None:
        assert RecommendationFetcher(client, logged_in()).fetch(0) == []
        assert client.calls == []


class TestParsing:
    """Per-tier parsing details."""

    def test_personalized_filters_invalid(self, client) -> None:
        client.queue(PERSONALIZED_PATH, ok([
            {"id": "1", "name": "ok", "vipFlag": True, "songTag": ["pop"]},
            {"id": "", "name": "no id"},
            {"id": "3", "name": ""},
        ]))
        songs = RecommendationFetcher(client, logged_in()).fetch(10)
        assert [s.id for s in songs] == ["1"]
        assert songs[0].is_restricted is True
        assert songs[0].tags == ("pop",)

    def test_public_only_invalid_records_falls_through(self, client) -> None:
        client.queue(NEWSONG, public({"result": [{"name": "no id"}]}))
        client.queue(TOP, public({"data": songs_json(1)}))
        songs = RecommendationFetcher(client, StubStore()).fetch(10)
        assert len(songs) == 1
        assert client.paths() == [NEWSONG, TOP]

    def test_newsong_passes_limit_and_unwraps(self, client) -> None:
        client.queue(NEWSONG, public({"result": [{"id": 900, "song": s} for s in songs_json(3, short=True)]}))
        songs = RecommendationFetcher(client, StubStore()).fetch(2)
        assert [s.id for s in songs] == ["0", "1"]
        _, _, kwargs = client.calls[0]
        assert kwargs["params"] == {"limit": 2}

    def test_chart_params(self, client) -> None:
        client.queue(NEWSONG, public({}))
        client.queue(TOP, public({"data": songs_json(1)}))
        RecommendationFetcher(client, StubStore()).fetch(5)
        _, _, kwargs = client.calls[1]
        assert kwargs["params"] == {"type": 0}


class TestValidateToken:
    """Lightweight token check."""

    def test_accepted(self, client) -> None:
        client.queue(PERSONALIZED_PATH, ok([]))
        assert RecommendationFetcher(client, StubStore()).validate_token("t") is True

    def test_rejected(self, client) -> None:
        client.queue(PERSONALIZED_PATH, RemoteError(401, "bad token"))
        assert RecommendationFetcher(client, StubStore()).validate_token("t") is False

    def test_unreachable(self, client) -> None:
        client.queue(PERSONALIZED_PATH, TransportError("down"))
        assert RecommendationFetcher(client, StubStore()).validate_token("t") is None
