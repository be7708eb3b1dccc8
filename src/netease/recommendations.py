from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass, field
from typing import List, Optional

from core.errors import RemoteError
from core.models import Song
from netease.song_parser import locate_song_array, parse_songs

logger = logging.getLogger(__name__)

PERSONALIZED_PATH = "/openapi/music/basic/recommend/songlist/get/v2"
PERSONALIZED_MAX_LIMIT = 40

SEARCH_PATH = "/search/get"
SEARCH_TERMS = ("流行", "热门", "推荐", "新歌", "经典")   # pop, trending, recommended, new, classic


@dataclass(frozen=True)
class PublicEndpoint:
    path: str
    description: str
    params: dict = field(default_factory=dict)
    pass_limit: bool = False

    def query(self, limit: int) -> dict:
        params = dict(self.params)
        if self.pass_limit:
            params["limit"] = limit
        return params


PUBLIC_ENDPOINTS = (
    PublicEndpoint("/personalized/newsong", "new songs", pass_limit=True),
    PublicEndpoint("/top/song", "chart", params={"type": 0}),
    PublicEndpoint("/recommend/songs", "recommended songs"),
    PublicEndpoint("/personalized", "personalized"),
)


class RecommendationFetcher:
    """
    Personalized -> public endpoints -> search, stopping at the first tier
    that yields a song. `fetch` never raises; an empty list means every tier
    came back empty or failed.
    """

    def __init__(
        self,
        client,
        token_store,
        *,
        endpoints=PUBLIC_ENDPOINTS,
        search_terms=SEARCH_TERMS,
        rng: random.Random | None = None,
    ):
        self.client = client
        self.token_store = token_store
        self.endpoints = tuple(endpoints)
        self.search_terms = tuple(search_terms)
        self.rng = rng or random.Random()

    def fetch(self, limit: int = 30, cancel_event: threading.Event | None = None) -> List[Song]:
        if limit <= 0:
            return []

        songs = self._guarded("personalized", self._fetch_personalized, limit, cancel_event)
        if songs:
            return songs

        for endpoint in self.endpoints:
            songs = self._guarded(endpoint.description, self._fetch_public, endpoint, limit, cancel_event)
            if songs:
                return songs

        songs = self._guarded("search", self._fetch_search, limit, cancel_event)
        if songs:
            return songs

        logger.warning("Every recommendation tier failed; returning an empty list")
        return []

    def _guarded(self, tier: str, fn, *args) -> List[Song]:
        try:
            songs = fn(*args)
        except Exception:
            logger.exception("Recommendation tier '%s' failed", tier)
            return []
        if songs:
            logger.info("Got %d song(s) from tier '%s'", len(songs), tier)
        else:
            logger.info("Tier '%s' produced no songs", tier)
        return songs or []

    # ----------------------------
    # Tiers
    # ----------------------------

    def _fetch_personalized(self, limit: int, cancel_event=None) -> List[Song]:
        credential = self.token_store.current()
        if credential is None:
            logger.info("No valid login; skipping personalized recommendations")
            return []

        env = self.client.request(
            PERSONALIZED_PATH,
            {"limit": min(limit, PERSONALIZED_MAX_LIMIT), "qualityFlag": True},
            access_token=credential.access_token,
            cancel_event=cancel_event,
        )
        return parse_songs(env.data)

    def _fetch_public(self, endpoint: PublicEndpoint, limit: int, cancel_event=None) -> List[Song]:
        env = self.client.request_public(
            endpoint.path,
            params=endpoint.query(limit),
            cancel_event=cancel_event,
        )
        return parse_songs(locate_song_array(env.body), limit=limit)

    def _fetch_search(self, limit: int, cancel_event=None) -> List[Song]:
        if not self.search_terms:
            return []
        term = self.rng.choice(self.search_terms)
        logger.info("Falling back to search for %r", term)

        env = self.client.request_public(
            SEARCH_PATH,
            data={"s": term, "type": 1, "limit": limit, "offset": 0},
            cancel_event=cancel_event,
        )
        return parse_songs(locate_song_array(env.body), limit=limit)

    # ----------------------------
    # Session check
    # ----------------------------

    def validate_token(self, access_token: str) -> Optional[bool]:
        """
        True/False when the service accepted/rejected the token,
        None when it could not be reached.
        """
        try:
            self.client.request(
                PERSONALIZED_PATH,
                {"limit": 1},
                access_token=access_token,
                max_attempts=1,
            )
        except RemoteError as e:
            logger.info("Access token rejected: %s", e)
            return False
        except Exception:
            logger.exception("Could not validate access token")
            return None
        return True
