# models.py
import random
import time
from typing import List, Optional

from pydantic import BaseModel


class SongSuggestion(BaseModel):
    title: str
    artist: str

    @property
    def query(self) -> str:
        """Search/exclusion key: "artist title"."""
        return f"{self.artist} {self.title}"


class VideoMatch(BaseModel):
    videoId: str
    title: str = ""
    thumbnail: str = ""
    channel: str = ""
    duration: str = ""
    durationSeconds: int = 0
    views: int = 0


class ResolvedTrack(SongSuggestion):
    id: str
    videoId: str
    thumbnail: str = ""

    @classmethod
    def from_match(cls, song: SongSuggestion, match: VideoMatch) -> "ResolvedTrack":
        # artist+title alone collide when a song is suggested twice
        stamp = int(time.time() * 1000)
        return cls(
            id=f"{song.artist}-{song.title}-{stamp}-{random.getrandbits(32):08x}",
            title=song.title,
            artist=song.artist,
            videoId=match.videoId,
            thumbnail=match.thumbnail,
        )


class Recommendation(BaseModel):
    songs: List[SongSuggestion]
    warning: Optional[str] = None


class PresetMood(BaseModel):
    emoji: str
    label: str
    value: str


# ─────────────────────────────────────────────────────────────
#  Request bodies
#  Fields are Optional so that a missing required value gets the
#  API's own 400 message, and null means "use the default".
# ─────────────────────────────────────────────────────────────

class RecommendRequest(BaseModel):
    mood: Optional[str] = None
    count: Optional[int] = None
    exclude: Optional[List[str]] = None


class SearchRequest(BaseModel):
    query: Optional[str] = None


class SessionRequest(BaseModel):
    mood: Optional[str] = None


class SeekRequest(BaseModel):
    index: int


class TrackEndedRequest(BaseModel):
    videoId: Optional[str] = None


class SessionState(BaseModel):
    sessionId: str
    mood: str
    state: str                      # "empty" | "ready"
    loading: bool = False
    status: str = ""
    error: Optional[str] = None
    position: Optional[int] = None
    current: Optional[ResolvedTrack] = None
    queue: List[ResolvedTrack] = []
