"""
Song recommendations for a mood, from an OpenAI chat model.

The model's reply is treated as untrusted text: the first JSON array in it
is parsed, every element is checked for a non-empty title and artist, songs
the caller asked to exclude are filtered out, and the list is capped at the
requested count. Any failure on the way (no API key, network error, timeout,
junk reply, nothing left after filtering) degrades to a small static list
for the mood, so callers always get songs back.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Iterable, List, Optional

from openai import AsyncOpenAI

from . import config
from .models import Recommendation, SongSuggestion

logger = logging.getLogger(__name__)

FALLBACK_WARNING = "Using fallback songs due to API error"

DEFAULT_FALLBACK_MOOD = "잔잔한"

FALLBACK_SONGS = {
    "잔잔한": [
        {"title": "River", "artist": "Joni Mitchell"},
        {"title": "Mad World", "artist": "Gary Jules"},
        {"title": "봄날", "artist": "BTS"},
    ],
    "신나는": [
        {"title": "Uptown Funk", "artist": "Mark Ronson ft. Bruno Mars"},
        {"title": "Dynamite", "artist": "BTS"},
        {"title": "Can't Stop the Feeling!", "artist": "Justin Timberlake"},
    ],
    "우울한": [
        {"title": "Hurt", "artist": "Johnny Cash"},
        {"title": "Black", "artist": "Pearl Jam"},
        {"title": "그대라는 사치", "artist": "한효주"},
    ],
}

_JSON_ARRAY_RE = re.compile(r"\[[\s\S]*\]")


class RecommendationError(Exception):
    pass


_client: AsyncOpenAI | None = None


def get_client() -> AsyncOpenAI:
    global _client
    if not config.OPENAI_API_KEY:
        raise RecommendationError("OpenAI API key not configured")
    if _client is None:
        _client = AsyncOpenAI(
            api_key=config.OPENAI_API_KEY,
            timeout=config.RECOMMEND_TIMEOUT,
            max_retries=0,
        )
    return _client


def song_key(text: str) -> str:
    """Case- and whitespace-insensitive form of an "artist title" string."""
    return " ".join(text.split()).casefold()


def fallback_songs(mood: str) -> List[SongSuggestion]:
    songs = FALLBACK_SONGS.get(mood) or FALLBACK_SONGS[DEFAULT_FALLBACK_MOOD]
    return [SongSuggestion(**s) for s in songs]


def build_prompt(mood: str, count: int, exclude: List[str]) -> str:
    exclude_text = ""
    if exclude:
        exclude_text = (
            "\n\nDo NOT include these songs that were already recommended: "
            + ", ".join(exclude)
        )
    return f"""You are a music curator. Given a mood/feeling, recommend {count} songs that match that vibe.

Mood: "{mood}"

Please recommend {count} diverse, well-known songs that match this mood. Include a mix of genres, eras, and artists but all should fit the emotional tone.

Return ONLY a JSON array in this exact format:
[
  {{
    "title": "Song Title",
    "artist": "Artist Name"
  }},
  ...
]

Guidelines:
- Include popular songs that are easy to find on YouTube
- Mix different genres and time periods
- Make sure all songs genuinely match the mood
- Use the exact song title as it appears on music platforms
- Include both Korean and international songs when appropriate{exclude_text}

Return only the JSON array, no additional text."""


def parse_songs(content: str) -> list:
    """Pull the first JSON array out of a free-text reply."""
    match = _JSON_ARRAY_RE.search(content)
    try:
        data = json.loads(match.group(0) if match else content)
    except json.JSONDecodeError as e:
        raise RecommendationError("Failed to parse song recommendations") from e
    if not isinstance(data, list):
        raise RecommendationError("Invalid response format")
    return data


def validate_songs(raw: list, count: int, exclude: Iterable[str] = ()) -> List[SongSuggestion]:
    """Keep well-formed, non-excluded, non-repeated songs, at most *count*."""
    seen = {song_key(e) for e in exclude}
    songs: List[SongSuggestion] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        title, artist = item.get("title"), item.get("artist")
        if not isinstance(title, str) or not isinstance(artist, str):
            continue
        title, artist = title.strip(), artist.strip()
        if not title or not artist:
            continue
        song = SongSuggestion(title=title, artist=artist)
        key = song_key(song.query)
        if key in seen:
            continue
        seen.add(key)
        songs.append(song)
        if len(songs) >= count:
            break
    return songs


async def fetch_songs(mood: str, count: int, exclude: List[str]) -> List[SongSuggestion]:
    """One model call, no retry. Raises RecommendationError on any fault."""
    client = get_client()
    try:
        completion = await client.chat.completions.create(
            model=config.OPENAI_MODEL,
            messages=[{"role": "user", "content": build_prompt(mood, count, exclude)}],
            temperature=config.OPENAI_TEMPERATURE,
        )
    except Exception as e:
        raise RecommendationError(f"OpenAI request failed: {e}") from e

    content = completion.choices[0].message.content if completion.choices else None
    if not content:
        raise RecommendationError("No response from OpenAI")

    songs = validate_songs(parse_songs(content), count, exclude)
    if not songs:
        logger.debug("Unusable reply for mood %r: %s", mood, content)
        raise RecommendationError("No valid songs in response")
    return songs


async def recommend(
    mood: str,
    count: int = config.DEFAULT_SONG_COUNT,
    exclude: Optional[Iterable[str]] = None,
) -> Recommendation:
    """
    Songs for *mood*; never raises.

    On failure the fallback list for the mood is returned with ``warning``
    set. ``count`` is clamped to 1..MAX_SONG_COUNT.
    """
    count = max(1, min(config.MAX_SONG_COUNT, int(count)))
    exclude = [e for e in (exclude or []) if isinstance(e, str) and e.strip()]
    try:
        songs = await fetch_songs(mood, count, exclude)
    except RecommendationError as e:
        logger.warning("Recommendation for mood %r fell back: %s", mood, e)
        return Recommendation(songs=fallback_songs(mood), warning=FALLBACK_WARNING)
    logger.info("Recommended %d songs for mood %r", len(songs), mood)
    return Recommendation(songs=songs)
