import asyncio
import time
from types import SimpleNamespace

import pytest

from moodtube import config, youtube

RAW_VIDEO = {
    "resultType": "video",
    "videoId": "k2qgadSvNyU",
    "title": "Hurt (Official Video)",
    "artists": [{"name": "Johnny Cash", "id": "UC123"}],
    "views": "1.2M",
    "duration": "3:38",
    "duration_seconds": 218,
    "thumbnails": [
        {"url": "https://i.ytimg.com/small.jpg", "width": 120, "height": 90},
        {"url": "https://i.ytimg.com/large.jpg", "width": 480, "height": 360},
    ],
}


@pytest.fixture
def ytm(monkeypatch):
    """Replace the shared YTMusic client with one returning canned results."""
    def install(results=None, error=None, delay=0.0):
        calls = []

        def search(query, filter=None, limit=20):
            calls.append({"query": query, "filter": filter, "limit": limit})
            if delay:
                time.sleep(delay)
            if error:
                raise error
            return results or []

        monkeypatch.setattr(youtube, "get_client", lambda: SimpleNamespace(search=search))
        return calls
    return install


def test_best_thumbnail_picks_widest():
    assert youtube.best_thumbnail(RAW_VIDEO["thumbnails"]) == "https://i.ytimg.com/large.jpg"
    assert youtube.best_thumbnail([]) == ""


@pytest.mark.parametrize("raw, expected", [
    ("1.2M", 1_200_000),
    ("532K views", 532_000),
    ("3.4B", 3_400_000_000),
    ("12,345", 12345),
    (987, 987),
    ("", 0),
    (None, 0),
])
def test_parse_count(raw, expected):
    assert youtube.parse_count(raw) == expected


def test_parse_duration():
    assert youtube.parse_duration("3:45") == 225
    assert youtube.parse_duration("1:02:03") == 3723
    assert youtube.parse_duration("live") == 0


def test_norm_video():
    match = youtube.norm_video(RAW_VIDEO)
    assert match.videoId == "k2qgadSvNyU"
    assert match.channel == "Johnny Cash"
    assert match.thumbnail == "https://i.ytimg.com/large.jpg"
    assert match.durationSeconds == 218
    assert match.views == 1_200_000


def test_norm_video_without_id():
    assert youtube.norm_video({"title": "Ghost"}) is None


def test_resolve_takes_top_video(ytm):
    second = dict(RAW_VIDEO, videoId="other")
    calls = ytm([RAW_VIDEO, second])
    match = asyncio.run(youtube.resolve("Johnny Cash Hurt"))
    assert match.videoId == "k2qgadSvNyU"
    assert calls == [{"query": "Johnny Cash Hurt", "filter": "videos", "limit": 1}]


def test_resolve_caches_hits(ytm):
    calls = ytm([RAW_VIDEO])
    asyncio.run(youtube.resolve("Johnny Cash Hurt"))
    asyncio.run(youtube.resolve("johnny cash hurt "))
    assert len(calls) == 1


def test_no_results(ytm):
    ytm([])
    with pytest.raises(youtube.VideoNotFound):
        asyncio.run(youtube.resolve_or_raise("zzzz"))
    assert asyncio.run(youtube.resolve("zzzz")) is None


def test_top_hit_without_video_id_is_not_found(ytm):
    ytm([{"title": "Channel page"}, RAW_VIDEO])
    assert asyncio.run(youtube.resolve("Johnny Cash")) is None


def test_backend_error(ytm):
    calls = ytm(error=RuntimeError("quota"))
    with pytest.raises(youtube.ResolverError) as exc:
        asyncio.run(youtube.resolve_or_raise("Johnny Cash Hurt"))
    assert not isinstance(exc.value, youtube.VideoNotFound)
    assert asyncio.run(youtube.resolve("Johnny Cash Hurt")) is None
    # failures are not cached
    assert len(calls) == 2


def test_search_timeout(ytm, monkeypatch):
    monkeypatch.setattr(config, "SEARCH_TIMEOUT", 0.05)
    ytm([RAW_VIDEO], delay=0.3)
    assert asyncio.run(youtube.resolve("Johnny Cash Hurt")) is None


def _match(video_id):
    return youtube.norm_video(dict(RAW_VIDEO, videoId=video_id))


def test_match_cache_expires(monkeypatch):
    cache = youtube.MatchCache(maxsize=2, ttl=10)
    now = [100.0]
    monkeypatch.setattr(youtube.time, "monotonic", lambda: now[0])
    cache.put("Johnny Cash Hurt", _match("a"))
    assert cache.get("johnny  cash hurt").videoId == "a"
    now[0] += 11
    assert cache.get("Johnny Cash Hurt") is None
    assert len(cache) == 0


def test_match_cache_evicts_least_recent():
    cache = youtube.MatchCache(maxsize=2, ttl=60)
    cache.put("a", _match("a"))
    cache.put("b", _match("b"))
    cache.get("A")
    cache.put("c", _match("c"))
    assert cache.get("b") is None
    assert cache.get("a").videoId == "a"
    assert len(cache) == 2


def test_warm_up_creates_client_once(monkeypatch):
    created = []
    monkeypatch.setattr(youtube, "_client", None)
    monkeypatch.setattr(youtube, "YTMusic", lambda: created.append(1) or SimpleNamespace())
    asyncio.run(youtube.warm_up())
    asyncio.run(youtube.warm_up())
    assert len(created) == 1
