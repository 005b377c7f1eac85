from enum import Enum
from typing import List, Optional, Set

from pydantic import BaseModel, Field


class MediaKind(str, Enum):
    VIDEO = "video"
    VIDEO_COLLECTION = "video_collection"
    TRACK = "track"
    TRACK_COLLECTION = "track_collection"
    UNKNOWN = "unknown"


STREAMING_KINDS = (MediaKind.TRACK, MediaKind.TRACK_COLLECTION)
VIDEO_KINDS = (MediaKind.VIDEO, MediaKind.VIDEO_COLLECTION)


class MediaReference(BaseModel):
    kind: MediaKind = MediaKind.UNKNOWN
    external_id: str = ""
    collection_id: Optional[str] = None
    raw_url: str  # Original URL, propagated to clients as currentSong

    @property
    def is_streaming(self) -> bool:
        return self.kind in STREAMING_KINDS

    @property
    def is_video(self) -> bool:
        return self.kind in VIDEO_KINDS

    @property
    def is_collection(self) -> bool:
        return self.kind in (MediaKind.VIDEO_COLLECTION, MediaKind.TRACK_COLLECTION)


class PlayState(str, Enum):
    PLAYING = "playing"
    PAUSED = "paused"


class SessionState(str, Enum):
    EMPTY = "empty"
    LOADING = "loading"
    PLAYING = "playing"
    PAUSED = "paused"


class PlayerState(BaseModel):
    """Reference clock for a room.

    Holds the last known playback offset (`timestamp`, seconds) and the
    server time it was recorded at (`last_updated`). The live position is
    never stored, only estimated from these two values.
    """
    state: PlayState = PlayState.PAUSED
    timestamp: float = 0.0  # Last known position
    last_updated: float = 0.0  # Server time when timestamp was updated

    @property
    def is_playing(self) -> bool:
        return self.state == PlayState.PLAYING

    def estimate(self, now: float) -> float:
        if self.is_playing:
            return self.timestamp + (now - self.last_updated)
        return self.timestamp

    def mark(self, now: float, position: Optional[float] = None, state: Optional[PlayState] = None):
        if position is not None:
            self.timestamp = position
        if state is not None:
            self.state = state
        self.last_updated = now

    def restart(self, now: float):
        self.mark(now, position=0.0, state=PlayState.PLAYING)


class CurrentSource(str, Enum):
    QUEUE = "queue"
    EXTERNAL = "external"


class CurrentMedia(BaseModel):
    source: CurrentSource
    reference: MediaReference
    index: int = -1  # Only meaningful for QUEUE

    @classmethod
    def from_queue(cls, index: int, reference: MediaReference) -> "CurrentMedia":
        return cls(source=CurrentSource.QUEUE, reference=reference, index=index)

    @classmethod
    def external(cls, reference: MediaReference) -> "CurrentMedia":
        return cls(source=CurrentSource.EXTERNAL, reference=reference)


class Room(BaseModel):
    id: str
    host_sid: Optional[str] = None
    members: Set[str] = Field(default_factory=set)
    queue: List[MediaReference] = Field(default_factory=list)
    current: Optional[CurrentMedia] = None
    player: PlayerState = Field(default_factory=PlayerState)
    streaming_device_id: Optional[str] = None

    @property
    def current_index(self) -> int:
        if self.current is None or self.current.source != CurrentSource.QUEUE:
            return -1
        return self.current.index

    @property
    def current_reference(self) -> Optional[MediaReference]:
        return self.current.reference if self.current else None

    @property
    def session_state(self) -> SessionState:
        reference = self.current_reference
        if reference is None:
            return SessionState.EMPTY
        if reference.is_streaming and not self.streaming_device_id:
            return SessionState.LOADING
        if self.player.is_playing:
            return SessionState.PLAYING
        return SessionState.PAUSED


class TrackInfo(BaseModel):
    name: str
    artist: Optional[str] = None
    uri: str
    duration_ms: Optional[int] = None
    preview_url: Optional[str] = None
