"""
Video resolver: turns an "artist title" query into one playable YouTube video.
===============================================================================
 - Unauthenticated ytmusicapi, single shared YTMusic instance (thread-safe
   for reads), created lazily
 - Blocking ytmusicapi calls run in a small thread pool so the event loop
   is never blocked, and every search is bounded by SEARCH_TIMEOUT
 - Only the top-ranked "videos" hit is used; YouTube's relevance order is
   trusted as-is
 - Successful matches live in an in-memory TTL cache; misses are not cached
"""

from __future__ import annotations

import asyncio
import functools
import logging
import re
import threading
import time
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Optional, Tuple

from ytmusicapi import YTMusic

from . import config
from .models import VideoMatch

logger = logging.getLogger(__name__)


class ResolverError(Exception):
    """The search backend failed or timed out."""


class VideoNotFound(ResolverError):
    """The search ran but produced no usable video."""


# ─────────────────────────────────────────────────────────────
#  Search client
# ─────────────────────────────────────────────────────────────

_pool = ThreadPoolExecutor(max_workers=config.SEARCH_WORKERS, thread_name_prefix="ytm")

_client: YTMusic | None = None
_client_lock = threading.Lock()


def get_client() -> YTMusic:
    """The shared unauthenticated YTMusic client, created on first use."""
    global _client
    with _client_lock:
        if _client is None:
            logger.debug("Creating YTMusic client")
            _client = YTMusic()
        return _client


def _search(query: str) -> list:
    return get_client().search(query, filter="videos", limit=1)


async def search_videos(query: str) -> list:
    """Top "videos" hit for *query*, searched on the pool (ytmusicapi blocks)."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(_pool, functools.partial(_search, query))


async def warm_up() -> None:
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(_pool, get_client)


# ─────────────────────────────────────────────────────────────
#  Match cache
#  Key: query, lower-cased with whitespace collapsed
#  Only successful matches are stored.
# ─────────────────────────────────────────────────────────────

def query_key(query: str) -> str:
    return " ".join(query.lower().split())


class MatchCache:
    """VideoMatch per query, expiring after ``ttl`` seconds, least recent evicted first."""

    def __init__(self, maxsize: int, ttl: float):
        self.maxsize = maxsize
        self.ttl = ttl
        self._entries: "OrderedDict[str, Tuple[VideoMatch, float]]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, query: str) -> Optional[VideoMatch]:
        key = query_key(query)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            match, stored_at = entry
            if time.monotonic() - stored_at > self.ttl:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return match

    def put(self, query: str, match: VideoMatch) -> None:
        key = query_key(query)
        with self._lock:
            self._entries[key] = (match, time.monotonic())
            self._entries.move_to_end(key)
            while len(self._entries) > self.maxsize:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Evicted cached match for %r", evicted)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


_matches = MatchCache(maxsize=512, ttl=config.SEARCH_CACHE_TTL)


# ─────────────────────────────────────────────────────────────
#  Normalisation helpers
# ─────────────────────────────────────────────────────────────

def best_thumbnail(thumbnails: Optional[list]) -> str:
    """URL of the widest thumbnail; ytmusicapi lists them smallest first."""
    sized = [t for t in thumbnails or [] if isinstance(t, dict) and t.get("url")]
    if not sized:
        return ""
    return max(sized, key=lambda t: (t.get("width") or 0, t.get("height") or 0))["url"]


_COUNT_SUFFIX = {"K": 1_000, "M": 1_000_000, "B": 1_000_000_000}
_COUNT_RE = re.compile(r"([\d.,]+)\s*([KMB])?", re.IGNORECASE)


def parse_count(raw: Any) -> int:
    """'1.2M views' -> 1200000. Unknown shapes give 0."""
    if isinstance(raw, int):
        return raw
    if not isinstance(raw, str):
        return 0
    m = _COUNT_RE.search(raw)
    if not m:
        return 0
    number = m.group(1).replace(",", "")
    try:
        value = float(number)
    except ValueError:
        return 0
    suffix = (m.group(2) or "").upper()
    return int(round(value * _COUNT_SUFFIX.get(suffix, 1)))


def parse_duration(raw: Any) -> int:
    """'1:02:03' / '3:45' -> seconds."""
    if not isinstance(raw, str) or not raw:
        return 0
    seconds = 0
    try:
        for part in raw.split(":"):
            seconds = seconds * 60 + int(part)
    except ValueError:
        return 0
    return seconds


def norm_video(item: dict) -> Optional[VideoMatch]:
    """Normalise a raw ytmusicapi video result. None if it has no videoId."""
    video_id = item.get("videoId")
    if not video_id:
        return None
    artists = item.get("artists") or []
    channel = ""
    if isinstance(artists, list) and artists and isinstance(artists[0], dict):
        channel = artists[0].get("name", "") or ""
    duration = item.get("duration") or ""
    return VideoMatch(
        videoId=video_id,
        title=item.get("title") or "",
        thumbnail=best_thumbnail(item.get("thumbnails")),
        channel=channel,
        duration=duration,
        durationSeconds=int(item.get("duration_seconds") or parse_duration(duration)),
        views=parse_count(item.get("views")),
    )


# ─────────────────────────────────────────────────────────────
#  Resolve
# ─────────────────────────────────────────────────────────────

async def resolve_or_raise(query: str) -> VideoMatch:
    """
    Top video hit for *query*.

    Raises VideoNotFound when the search is empty, ResolverError when the
    backend fails or exceeds SEARCH_TIMEOUT.
    """
    cached = _matches.get(query)
    if cached is not None:
        return cached

    try:
        raw = await asyncio.wait_for(search_videos(query), timeout=config.SEARCH_TIMEOUT)
    except asyncio.TimeoutError as e:
        raise ResolverError(f"search timed out after {config.SEARCH_TIMEOUT}s") from e
    except Exception as e:
        raise ResolverError(str(e)) from e

    top = next((item for item in raw or [] if isinstance(item, dict)), None)
    match = norm_video(top) if top else None
    if match is None:
        raise VideoNotFound(query)
    _matches.put(query, match)
    return match


async def resolve(query: str) -> Optional[VideoMatch]:
    """Like resolve_or_raise, but every failure is just None."""
    try:
        return await resolve_or_raise(query)
    except VideoNotFound:
        logger.info("No video found for %r", query)
    except ResolverError as e:
        logger.warning("Video search failed for %r: %s", query, e)
    return None
