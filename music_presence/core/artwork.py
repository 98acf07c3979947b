import logging
import re
from functools import lru_cache
from typing import Optional

import requests

logger = logging.getLogger(__name__)

ITUNES_SEARCH_URL = "https://itunes.apple.com/search"
LOOKUP_TIMEOUT = 4
MIN_SCORE = 4
_HTTP = requests.Session()


def _normalize(value: str) -> str:
    value = value.lower()
    value = value.replace("&", "and")
    value = re.sub(r"\b(feat|featuring|ft)\b\.?", "", value)
    value = re.sub(r"[^a-z0-9]+", " ", value)
    return " ".join(value.split()).strip()


def _normalize_album(value: str) -> str:
    value = value.lower()
    # Drop edition/format markers in parentheses/brackets.
    value = re.sub(r"[\(\[].*?[\)\]]", " ", value)
    value = re.sub(r"\b(deluxe|expanded|remaster(ed)?|edition|version|clean|explicit)\b", " ", value)
    return _normalize(value)


def _close(a: str, b: str) -> bool:
    return bool(a and b) and (a in b or b in a)


def score_result(item: dict, title: str, artist: str, album: str) -> int:
    track_name = _normalize(item.get("trackName", "") or "")
    artist_name = _normalize(item.get("artistName", "") or "")
    album_name = _normalize_album(item.get("collectionName", "") or "")

    score = 0
    if track_name == title:
        score += 6
    elif _close(track_name, title):
        score += 3
    elif title and not set(title.split()) & set(track_name.split()):
        return -1

    if artist_name == artist:
        score += 4
    elif _close(artist_name, artist):
        score += 2
    elif artist:
        score -= 5

    if album and album_name:
        if album_name == album:
            score += 6
        elif _close(album_name, album):
            score += 2
        else:
            score -= 2

    if item.get("artworkUrl100"):
        score += 1
    return score


@lru_cache(maxsize=512)
def _search(term: str) -> tuple:
    # Raises on network errors so failures are never cached.
    params = {"term": term, "entity": "song", "limit": 8}
    r = _HTTP.get(ITUNES_SEARCH_URL, params=params, timeout=LOOKUP_TIMEOUT)
    r.raise_for_status()
    return tuple(r.json().get("results", []))


def lookup_artwork_url(title: str, artist: str, album: str = "") -> Optional[str]:
    """Best matching 512x512 cover URL from the iTunes Search API, or None."""
    title = (title or "").strip()
    artist = (artist or "").strip()
    album = (album or "").strip()
    if not title:
        return None

    try:
        results = _search(f"{title} {artist} {album}".strip())
    except (requests.RequestException, ValueError) as e:
        logger.debug("Artwork lookup failed for %r: %s", title, e)
        return None

    title_norm, artist_norm, album_norm = _normalize(title), _normalize(artist), _normalize_album(album)
    scored = [(score_result(item, title_norm, artist_norm, album_norm), item) for item in results]
    scored = [pair for pair in scored if pair[0] >= MIN_SCORE]
    if not scored:
        return None

    best = max(scored, key=lambda pair: pair[0])[1]
    artwork = best.get("artworkUrl100") or best.get("artworkUrl60")
    if not artwork:
        return None
    logger.debug("Artwork match: '%s' on '%s'", best.get("trackName"), best.get("collectionName"))
    return re.sub(r"/\d+x\d+", "/512x512", artwork)
