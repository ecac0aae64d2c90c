"""
MoodTube API
============
 - POST /recommend: songs for a mood from the language model, with a static
   fallback list (and a "warning") whenever the model can't be used
 - POST /search: top YouTube video for an "artist title" query
 - /sessions: server-side player state for one mood: queue built in
   batches of three searches, circular next/previous/seek, auto-advance on
   "track ended" signals, and "more songs" extension that never moves the
   current position
 - GET /moods: preset moods plus the most recently chosen ones
 - Errors are always {"error": "..."}
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from typing import Dict, List

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__, config, recommender, youtube
from .models import (
    PresetMood,
    RecommendRequest,
    SearchRequest,
    SeekRequest,
    SessionRequest,
    TrackEndedRequest,
)
from .playback import EmptyQueueError, PlaybackSession

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# ─────────────────────────────────────────────────────────────
#  App setup
# ─────────────────────────────────────────────────────────────

app = FastAPI(
    title="MoodTube",
    description="Mood-based music queue: LLM recommendations played through YouTube.",
    version=__version__,
)

app.add_middleware(GZipMiddleware, minimum_size=500)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["*"],
)


@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse({"error": message}, status_code=400)


# ─────────────────────────────────────────────────────────────
#  Moods
# ─────────────────────────────────────────────────────────────

PRESET_MOODS: List[PresetMood] = [
    PresetMood(emoji="🌊", label="잔잔한", value="calm"),
    PresetMood(emoji="🔥", label="신나는", value="energetic"),
    PresetMood(emoji="🌧️", label="우울한", value="melancholy"),
    PresetMood(emoji="🎯", label="집중", value="focus"),
    PresetMood(emoji="💕", label="로맨틱", value="romantic"),
    PresetMood(emoji="🚗", label="드라이브", value="drive"),
    PresetMood(emoji="💪", label="운동", value="workout"),
    PresetMood(emoji="🌙", label="새벽감성", value="late-night"),
    PresetMood(emoji="☕", label="카페", value="cafe"),
    PresetMood(emoji="🎉", label="파티", value="party"),
    PresetMood(emoji="🍂", label="가을감성", value="autumn"),
    PresetMood(emoji="🎸", label="록", value="rock"),
]

# Most-recent-first, de-duplicated
_recent_moods: List[dict] = []


def remember_mood(mood: str) -> None:
    global _recent_moods
    entry = {"mood": mood, "timestamp": int(time.time() * 1000)}
    _recent_moods = [entry] + [m for m in _recent_moods if m["mood"] != mood]
    del _recent_moods[config.RECENT_MOODS_LIMIT:]


def _require_text(value: str | None, message: str) -> str:
    text = (value or "").strip()
    if not text:
        raise HTTPException(400, detail=message)
    return text


# ─────────────────────────────────────────────────────────────
#  Session store
#  Key: session id
#  Sessions older than SESSION_TTL are dropped on access; the
#  oldest are pruned once there are more than MAX_SESSIONS.
# ─────────────────────────────────────────────────────────────

_sessions: "OrderedDict[str, Dict]" = OrderedDict()   # { id -> {session, created_at} }


def _store_session(session: PlaybackSession) -> None:
    _sessions[session.id] = {"session": session, "created_at": time.time()}
    while len(_sessions) > config.MAX_SESSIONS:
        oldest, _ = _sessions.popitem(last=False)
        logger.info("Pruned session %s", oldest)


def get_session(session_id: str) -> PlaybackSession:
    entry = _sessions.get(session_id)
    if entry and time.time() - entry["created_at"] >= config.SESSION_TTL:
        del _sessions[session_id]
        entry = None
    if not entry:
        raise HTTPException(404, detail="Session not found")
    return entry["session"]


def new_session(mood: str) -> PlaybackSession:
    """Factory used by POST /sessions."""
    return PlaybackSession(mood)


# ─────────────────────────────────────────────────────────────
#  Startup warm-up
# ─────────────────────────────────────────────────────────────

@app.on_event("startup")
async def startup():
    """Pre-initialise the YTMusic client so the first search is fast."""
    try:
        await youtube.warm_up()
    except Exception as e:
        # Non-fatal, initialised again on first search
        logger.warning("YTMusic warm-up failed: %s", e)
    if not config.OPENAI_API_KEY:
        logger.warning("OPENAI_API_KEY is not set; recommendations will use fallback songs")


# ─────────────────────────────────────────────────────────────
#  Health check
# ─────────────────────────────────────────────────────────────

@app.get("/health", tags=["meta"])
async def health():
    return {"status": "ok", "version": __version__}


# ─────────────────────────────────────────────────────────────
#  Recommend
# ─────────────────────────────────────────────────────────────

@app.post("/recommend", tags=["songs"])
async def recommend(body: RecommendRequest):
    """
    Songs matching a mood.

    Never fails because of the model: on any upstream problem the fallback
    list is returned with status 200 and a "warning" field.
    """
    mood = _require_text(body.mood, "Mood is required")
    # null or 0 count and null exclude fall back to the defaults
    count = body.count or config.DEFAULT_SONG_COUNT
    rec = await recommender.recommend(mood, count, body.exclude or [])
    return rec.model_dump(exclude_none=True)


# ─────────────────────────────────────────────────────────────
#  Search
# ─────────────────────────────────────────────────────────────

@app.post("/search", tags=["songs"])
async def search(body: SearchRequest):
    """Top YouTube video for a query."""
    query = _require_text(body.query, "Query is required")
    try:
        match = await youtube.resolve_or_raise(query)
    except youtube.VideoNotFound:
        raise HTTPException(404, detail="No results found")
    except youtube.ResolverError as e:
        logger.error("Error searching YouTube for %r: %s", query, e)
        raise HTTPException(500, detail="Failed to search YouTube")
    return match.model_dump()


# ─────────────────────────────────────────────────────────────
#  Moods
# ─────────────────────────────────────────────────────────────

@app.get("/moods", tags=["moods"])
async def moods():
    return {
        "presets": [m.model_dump() for m in PRESET_MOODS],
        "recent": list(_recent_moods),
    }


# ─────────────────────────────────────────────────────────────
#  Sessions
# ─────────────────────────────────────────────────────────────

@app.post("/sessions", tags=["sessions"], status_code=201)
async def create_session(body: SessionRequest):
    """
    Start a session for a mood and build its queue.

    Returns 404 with {error, sessionId} when nothing playable was found;
    the caller should send the user back to mood selection.
    """
    mood = _require_text(body.mood, "Mood is required")
    remember_mood(mood)
    session = new_session(mood)
    _store_session(session)
    try:
        await session.start()
    except EmptyQueueError as e:
        return JSONResponse({"error": str(e), "sessionId": session.id}, status_code=404)
    return session.snapshot().model_dump()


@app.get("/sessions/{session_id}", tags=["sessions"])
async def read_session(session_id: str):
    return get_session(session_id).snapshot().model_dump()


@app.delete("/sessions/{session_id}", tags=["sessions"])
async def delete_session(session_id: str):
    _sessions.pop(session_id, None)
    return {"cleared": session_id}


@app.post("/sessions/{session_id}/next", tags=["sessions"])
async def next_track(session_id: str):
    session = get_session(session_id)
    session.next()
    return session.snapshot().model_dump()


@app.post("/sessions/{session_id}/previous", tags=["sessions"])
async def previous_track(session_id: str):
    session = get_session(session_id)
    session.previous()
    return session.snapshot().model_dump()


@app.post("/sessions/{session_id}/seek", tags=["sessions"])
async def seek_track(session_id: str, body: SeekRequest):
    session = get_session(session_id)
    try:
        session.seek(body.index)
    except IndexError as e:
        raise HTTPException(400, detail=str(e))
    return session.snapshot().model_dump()


@app.post("/sessions/{session_id}/ended", tags=["sessions"])
async def track_ended(session_id: str, body: TrackEndedRequest | None = None):
    """End-of-track signal from the player; repeats are ignored."""
    session = get_session(session_id)
    session.track_ended(body.videoId if body else None)
    return session.snapshot().model_dump()


@app.post("/sessions/{session_id}/extend", tags=["sessions"])
async def extend_session(session_id: str):
    """Append more songs for the session's mood; position is unchanged."""
    session = get_session(session_id)
    added = await session.extend()
    return {"added": len(added), "session": session.snapshot().model_dump()}
