import re
import unicodedata
from datetime import datetime, timezone
from typing import Iterable, List

from core.models import Song


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def from_epoch_s(value: float) -> datetime:
    return datetime.fromtimestamp(float(value), tz=timezone.utc)


def to_epoch_s(dt: datetime) -> float:
    return dt.timestamp()


def strip_accents(s: str) -> str:
    """
    NFKD-decompose and drop combining marks ("Beyoncé" -> "Beyonce").
    CJK text passes through untouched.
    """
    normalized = unicodedata.normalize("NFKD", s)
    return "".join(c for c in normalized if not unicodedata.combining(c))


def collapse(s: str) -> str:
    return re.sub(r"\s+", " ", s).strip()


def prepare_input(input_str: str) -> str:
    prepared = strip_accents(input_str or "")

    # punctuation -> space, apostrophes vanish ("Don't" == "Dont")
    prepared = re.sub(r"[`~!@#$%^&*()_|+\-=?;:\",.<>{}\[\]\\\/·]", " ", prepared)
    prepared = re.sub(r"[’']", "", prepared)

    return collapse(prepared.casefold())


def song_matches(song: Song, query: str) -> bool:
    needle = prepare_input(query)
    if not needle:
        return True
    for haystack in (song.name, song.artists_text, song.album.name):
        if needle in prepare_input(haystack):
            return True
    return False


def filter_songs(songs: Iterable[Song], query: str | None) -> List[Song]:
    # blank query keeps everything, in order
    if not query or not query.strip():
        return list(songs)
    return [s for s in songs if song_matches(s, query)]
