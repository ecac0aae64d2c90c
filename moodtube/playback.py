"""
Queue assembly and the per-session playback state machine.

A session is one mood selection: the recommended songs are resolved to
videos three at a time, the playable ones form a circular queue, and the
position moves with next/previous/seek and with "track ended" signals from
the player. More songs can be appended later without touching the position.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Awaitable, Callable, List, Optional, Sequence

from . import config, recommender, youtube
from .models import Recommendation, ResolvedTrack, SessionState, SongSuggestion, VideoMatch

logger = logging.getLogger(__name__)

RecommendFn = Callable[..., Awaitable[Recommendation]]
ResolveFn = Callable[[str], Awaitable[Optional[VideoMatch]]]
ProgressFn = Callable[[int, int], None]

NO_RECOMMENDATIONS = "No songs were recommended."
NO_PLAYABLE_TRACKS = "No playable songs could be found."

# Window after an auto-advance in which an unidentified end signal is
# taken as a repeat of the one that caused it
END_SIGNAL_GRACE = 2.0


class EmptyQueueError(Exception):
    """Nothing playable came out of a build."""


# ─────────────────────────────────────────────────────────────
#  Queue builder
# ─────────────────────────────────────────────────────────────

async def _resolve_one(song: SongSuggestion, resolve: ResolveFn) -> Optional[ResolvedTrack]:
    try:
        match = await resolve(song.query)
    except Exception:
        logger.exception("Resolver raised for %r", song.query)
        return None
    if match is None or not match.videoId:
        logger.debug("Dropping unresolved song %r", song.query)
        return None
    return ResolvedTrack.from_match(song, match)


async def build_queue(
    suggestions: Sequence[SongSuggestion],
    resolve: ResolveFn = youtube.resolve,
    on_progress: Optional[ProgressFn] = None,
    batch_size: int = config.RESOLVE_BATCH_SIZE,
) -> List[ResolvedTrack]:
    """
    Resolve *suggestions* into playable tracks, in input order.

    Each batch of ``batch_size`` songs is searched concurrently and the next
    batch waits until the whole batch has settled, so at most ``batch_size``
    searches are ever outstanding. Songs that fail to resolve are dropped.
    Raises EmptyQueueError if none resolve.
    """
    tracks: List[ResolvedTrack] = []
    total = len(suggestions)
    for start in range(0, total, batch_size):
        batch = suggestions[start:start + batch_size]
        results = await asyncio.gather(*(_resolve_one(s, resolve) for s in batch))
        tracks.extend(t for t in results if t is not None)
        if on_progress is not None:
            on_progress(len(tracks), total)

    if not tracks:
        raise EmptyQueueError(NO_PLAYABLE_TRACKS)
    logger.info("Resolved %d of %d songs", len(tracks), total)
    return tracks


# ─────────────────────────────────────────────────────────────
#  Playback session
# ─────────────────────────────────────────────────────────────

class PlaybackSession:
    """
    Queue + position for one mood, with the transitions the player drives.

    State is ``"empty"`` until the first successful build and ``"ready"``
    afterwards; ``loading`` is set while a build or extension is in flight.

    Every start() bumps ``generation``. A build or extension that finishes
    after a newer start() has begun is discarded rather than applied.

    End-of-track signals advance at most once per track: a repeat of the
    signal that caused an advance is dropped (see track_ended).
    """

    def __init__(
        self,
        mood: str,
        recommend: RecommendFn = recommender.recommend,
        resolve: ResolveFn = youtube.resolve,
        session_id: Optional[str] = None,
    ):
        self.id = session_id or uuid.uuid4().hex
        self.mood = mood
        self._recommend = recommend
        self._resolve = resolve

        self.queue: List[ResolvedTrack] = []
        self.position: Optional[int] = None
        self.loading = False
        self.status = ""
        self.error: Optional[str] = None
        self.generation = 0

        self._ended_id: Optional[str] = None
        self._advanced_at = float("-inf")
        self._extend_lock = asyncio.Lock()

    # -- state -------------------------------------------------

    @property
    def state(self) -> str:
        return "ready" if self.queue else "empty"

    @property
    def current(self) -> Optional[ResolvedTrack]:
        if self.position is None:
            return None
        return self.queue[self.position]

    def snapshot(self) -> SessionState:
        return SessionState(
            sessionId=self.id,
            mood=self.mood,
            state=self.state,
            loading=self.loading,
            status=self.status,
            error=self.error,
            position=self.position,
            current=self.current,
            queue=list(self.queue),
        )

    def _report(self, resolved: int, total: int) -> None:
        self.status = f"Found {resolved} of {total} songs"

    def _load(self, index: int) -> ResolvedTrack:
        self.position = index
        self._advanced_at = float("-inf")
        track = self.queue[index]
        logger.debug("Session %s loaded #%d %r", self.id, index, track.videoId)
        return track

    # -- build -------------------------------------------------

    async def start(self) -> List[ResolvedTrack]:
        """Recommend, resolve and install a fresh queue at position 0."""
        self.generation += 1
        generation = self.generation
        self.loading = True
        self.error = None
        self.status = "Finding songs"
        try:
            rec = await self._recommend(self.mood, config.DEFAULT_SONG_COUNT, [])
            if not rec.songs:
                raise EmptyQueueError(NO_RECOMMENDATIONS)
            tracks = await build_queue(rec.songs, self._resolve, self._report)
        except EmptyQueueError as e:
            if generation == self.generation:
                self.error = str(e)
                self.status = ""
            raise
        finally:
            if generation == self.generation:
                self.loading = False

        if generation != self.generation:
            logger.info("Session %s discarded stale build %d", self.id, generation)
            return []
        self.queue = tracks
        self._ended_id = None
        self._load(0)
        logger.info("Session %s ready with %d tracks for %r", self.id, len(tracks), self.mood)
        return tracks

    async def extend(self) -> List[ResolvedTrack]:
        """
        Append more songs for the same mood, skipping anything already queued.

        Position is never changed. Returns the appended tracks; an empty list
        means the queue was left as it was.
        """
        async with self._extend_lock:
            if not self.queue:
                return []
            generation = self.generation
            exclude = [t.query for t in self.queue]
            self.loading = True
            try:
                rec = await self._recommend(self.mood, config.DEFAULT_SONG_COUNT, exclude)
                queued = {recommender.song_key(q) for q in exclude}
                fresh = [s for s in rec.songs if recommender.song_key(s.query) not in queued]
                if not fresh:
                    logger.info("Session %s: nothing new to add", self.id)
                    return []
                tracks = await build_queue(fresh, self._resolve, self._report)
            except EmptyQueueError:
                logger.info("Session %s: no new songs resolved", self.id)
                return []
            finally:
                if generation == self.generation:
                    self.loading = False

            if generation != self.generation:
                logger.info("Session %s discarded stale extension", self.id)
                return []
            self.queue.extend(tracks)
            logger.info("Session %s extended by %d tracks", self.id, len(tracks))
            return tracks

    # -- transitions -------------------------------------------

    def next(self) -> Optional[ResolvedTrack]:
        if not self.queue:
            return None
        return self._load((self.position + 1) % len(self.queue))

    def previous(self) -> Optional[ResolvedTrack]:
        if not self.queue:
            return None
        index = len(self.queue) - 1 if self.position == 0 else self.position - 1
        return self._load(index)

    def seek(self, index: int) -> ResolvedTrack:
        if not 0 <= index < len(self.queue):
            raise IndexError(f"track index {index} out of range")
        return self._load(index)

    def track_ended(self, video_id: Optional[str] = None) -> Optional[ResolvedTrack]:
        """
        Auto-advance on the player's end-of-track signal.

        Returns the newly loaded track, or None when the signal was ignored:
        empty queue, a signal naming a video other than the current one, or a
        repeat of the signal that caused the last auto-advance. A repeat is
        recognised by track: the current track is the one just advanced from
        (a single-track queue wrapping onto itself), or the signal names no
        video and arrives within END_SIGNAL_GRACE of the advance.
        """
        if not self.queue:
            return None
        current = self.current
        if video_id and video_id != current.videoId:
            logger.debug("Session %s ignored stale end signal for %r", self.id, video_id)
            return None
        just_advanced = time.monotonic() - self._advanced_at < END_SIGNAL_GRACE
        if just_advanced and (not video_id or current.id == self._ended_id):
            logger.debug("Session %s ignored repeated end signal", self.id)
            return None
        self._ended_id = current.id
        track = self.next()
        self._advanced_at = time.monotonic()
        return track
