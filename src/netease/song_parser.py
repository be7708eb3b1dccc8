"""
JSON -> Song.

The service returns songs in (at least) two spellings: the long form used by
the open API and the old web API (`duration`, `artists`, `album`) and the
abbreviated form used by newer web endpoints (`dt`, `ar`, `al`). Everything
here is pure and never raises on bad input; a record that cannot yield both
an id and a name is dropped.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, List, Mapping, Optional

from core.errors import ValidationError
from core.models import Album, Artist, Song

logger = logging.getLogger(__name__)

RESTRICTED_FEES = {1, 4}

DURATION_KEYS = ("dt", "duration", "dur", "durationMs")
ARTIST_KEYS = ("ar", "artists")
ALBUM_KEYS = ("al", "album")


def _first(obj: Mapping, keys: Iterable[str]) -> Any:
    for key in keys:
        if key in obj and obj[key] is not None:
            return obj[key]
    return None


def _as_id(value: Any) -> str:
    # ids arrive as numbers from most endpoints and as strings from the open API
    if value is None or isinstance(value, bool):
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def _as_text(value: Any) -> str:
    if value is None or isinstance(value, (dict, list)):
        return ""
    return str(value).strip()


def _as_int(value: Any, default: int = 0) -> int:
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default


def _truthy_flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


def _parse_artists(raw: Any) -> tuple[Artist, ...]:
    if not isinstance(raw, list):
        return ()
    out = []
    for a in raw:
        if isinstance(a, Mapping):
            out.append(Artist(id=_as_id(a.get("id")), name=_as_text(a.get("name"))))
        elif isinstance(a, str) and a.strip():
            out.append(Artist(id="", name=a.strip()))
    return tuple(out)


def _parse_album(raw: Any, song_cover: str) -> Album:
    if not isinstance(raw, Mapping):
        return Album(cover_url=song_cover)
    cover = _as_text(raw.get("picUrl")) or _as_text(raw.get("coverUrl")) or song_cover
    return Album(id=_as_id(raw.get("id")), name=_as_text(raw.get("name")), cover_url=cover)


def _parse_tags(raw: Any) -> tuple[str, ...]:
    if not isinstance(raw, list):
        return ()
    return tuple(t.strip() for t in raw if isinstance(t, str) and t.strip())


def is_restricted(obj: Mapping) -> bool:
    if any(_truthy_flag(obj.get(k)) for k in ("vipFlag", "payPlayFlag", "vipPlayFlag")):
        return True

    fee = obj.get("fee")
    if fee is not None and _as_int(fee, default=-1) in RESTRICTED_FEES:
        return True

    privilege = obj.get("privilege")
    if isinstance(privilege, Mapping) and privilege.get("st") is not None:
        if _as_int(privilege.get("st")) < 0:
            return True

    return False


def _build_song(obj: Mapping) -> Song:
    song_id = _as_id(obj.get("id"))
    name = _as_text(obj.get("name"))
    if not song_id or not name:
        raise ValidationError("record lacks id or name")

    song_cover = _as_text(obj.get("coverImgUrl"))
    return Song(
        id=song_id,
        name=name,
        duration_ms=max(0, _as_int(_first(obj, DURATION_KEYS))),
        artists=_parse_artists(_first(obj, ARTIST_KEYS)),
        album=_parse_album(_first(obj, ALBUM_KEYS), song_cover),
        is_restricted=is_restricted(obj),
        tags=_parse_tags(obj.get("songTag")),
    )


def normalize_song(obj: Any) -> Optional[Song]:
    if not isinstance(obj, Mapping):
        return None
    try:
        return _build_song(obj)
    except ValidationError:
        return None


def parse_songs(items: Any, limit: int | None = None) -> List[Song]:
    """
    Parse a raw song array, unwrapping `{"song": {...}}` wrappers.
    `limit` caps how many raw elements are looked at, not how many survive.
    """
    if not isinstance(items, list):
        return []
    if limit is not None:
        items = items[:max(0, limit)]

    songs = []
    for el in items:
        if isinstance(el, Mapping) and isinstance(el.get("song"), Mapping):
            el = el["song"]
        song = normalize_song(el)
        if song is not None:
            songs.append(song)

    dropped = len(items) - len(songs)
    if dropped:
        logger.debug("Dropped %d record(s) without id/name", dropped)
    return songs


# -------------------------------
# Shape matchers: body -> raw song array, or None
# -------------------------------
def match_result_songs(body: Mapping) -> Optional[list]:
    result = body.get("result")
    if isinstance(result, Mapping) and isinstance(result.get("songs"), list):
        return result["songs"]
    return None


def match_result_array(body: Mapping) -> Optional[list]:
    result = body.get("result")
    return result if isinstance(result, list) else None


def match_data_array(body: Mapping) -> Optional[list]:
    data = body.get("data")
    return data if isinstance(data, list) else None


SONG_ARRAY_MATCHERS: tuple[Callable[[Mapping], Optional[list]], ...] = (
    match_result_songs,
    match_result_array,
    match_data_array,
)


def locate_song_array(body: Any, matchers=SONG_ARRAY_MATCHERS) -> Optional[list]:
    if not isinstance(body, Mapping):
        return None
    for matcher in matchers:
        found = matcher(body)
        if found is not None:
            return found
    return None
