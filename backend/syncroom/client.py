"""Client-side playback adapter.

Keeps a local playback engine in step with the room by applying the server's
broadcasts and reporting the local position back. The engine itself (a
YouTube or Spotify widget, a local player, a test double) is opaque and only
needs to implement `PlaybackEngine`.
"""
import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Protocol

from syncroom.models.room import MediaKind, MediaReference
from syncroom.services.media import classify

logger = logging.getLogger(__name__)

# Only report positions that moved at least this far since the last report
REPORT_THRESHOLD = 1.0


class EngineState(str, Enum):
    UNSTARTED = "unstarted"
    BUFFERING = "buffering"
    PLAYING = "playing"
    PAUSED = "paused"
    ENDED = "ended"


class PlaybackError(Exception):
    """Raised by an engine that failed to load or play media."""


class PlaybackEngine(Protocol):
    async def load_media(self, reference: MediaReference, start: float, autoplay: bool) -> None: ...

    async def play(self) -> None: ...

    async def pause(self) -> None: ...

    async def seek_to(self, position: float) -> None: ...

    async def get_position(self) -> float: ...

    async def get_state(self) -> EngineState: ...

    async def next_item(self) -> None: ...

    async def previous_item(self) -> None: ...


class Emitter(Protocol):
    async def emit(self, event: str, data: Any = None) -> None: ...


class PlaybackAdapter:
    def __init__(
        self,
        engine: PlaybackEngine,
        emitter: Emitter,
        base_delay: float = 2.0,
        max_delay: float = 30.0,
        max_attempts: int = 5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.engine = engine
        self.emitter = emitter
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_attempts = max_attempts
        self._sleep = sleep
        self.room_id: Optional[str] = None
        self.reference: Optional[MediaReference] = None
        self.user_count = 0
        self._last_reported: Optional[float] = None
        self.device_id: Optional[str] = None
        self.tracks: List[dict] = []

    def attach(self, sio) -> None:
        """Register handlers for the server's broadcasts on a socket.io client."""
        sio.on("roomCreated", self.on_room_created)
        sio.on("roomJoined", self.on_room_joined)
        sio.on("userCountUpdate", self.on_user_count)
        sio.on("newSong", self.on_new_song)
        sio.on("play", self.on_play)
        sio.on("pause", self.on_pause)
        sio.on("seek", self.on_seek)
        sio.on("skip", self.on_skip)
        sio.on("previous", self.on_previous)
        sio.on("spotifyTrackLoaded", self.on_spotify_track_loaded)
        sio.on("spotifyPlaylistLoaded", self.on_spotify_playlist_loaded)
        sio.on("error", self.on_error)

    def backoff(self, attempt: int) -> float:
        """Delay before reinitialization attempt number `attempt` (1-based)."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    async def load(self, reference: MediaReference, start: float = 0.0, autoplay: bool = True) -> bool:
        """Load `reference` into the engine, retrying failed initializations.

        UNKNOWN references are tracked but never handed to the engine.
        Returns True once the engine accepted the media.
        """
        self.reference = reference
        self._last_reported = None
        if reference.kind == MediaKind.UNKNOWN:
            logger.info(f"Not loading unrecognized link {reference.raw_url}")
            return False

        attempt = 0
        while True:
            try:
                await self.engine.load_media(reference, start, autoplay)
                return True
            except PlaybackError:
                attempt += 1
                if attempt >= self.max_attempts:
                    logger.error(f"Giving up on {reference.raw_url} after {attempt} attempts", exc_info=True)
                    return False
                delay = self.backoff(attempt)
                logger.warning(f"Playback failed for {reference.raw_url}, retrying in {delay:.0f}s")
                await self._sleep(delay)
            if self.reference is not reference:
                # Something newer was loaded while we were waiting
                return False

    # server broadcasts

    async def on_room_created(self, room_id: str) -> None:
        self.room_id = room_id
        await self._announce_device()

    async def on_room_joined(self, data: dict) -> None:
        self.room_id = data.get("roomId")
        await self._announce_device()
        song = data.get("currentSong")
        if song:
            await self.load(classify(song), float(data.get("currentTime") or 0), bool(data.get("isPlaying")))

    async def on_user_count(self, count: int) -> None:
        self.user_count = count

    async def on_new_song(self, url: str) -> None:
        await self.load(classify(url), 0.0, True)

    async def on_play(self, data=None) -> None:
        if self.reference is not None:
            await self.engine.play()

    async def on_pause(self, data=None) -> None:
        if self.reference is not None:
            await self.engine.pause()

    async def on_seek(self, position: float) -> None:
        if self.reference is None:
            return
        await self.engine.seek_to(position)
        if await self.engine.get_state() != EngineState.PLAYING:
            await self.engine.play()

    async def on_skip(self, data: dict) -> None:
        await self._navigate(data, forward=True)

    async def on_previous(self, data: dict) -> None:
        await self._navigate(data, forward=False)

    async def _navigate(self, data: dict, forward: bool) -> None:
        # Inside a provider-native collection the engine moves itself
        if self.reference is not None and self.reference.is_collection:
            if forward:
                await self.engine.next_item()
            else:
                await self.engine.previous_item()
            return
        song = data.get("currentSong") if isinstance(data, dict) else None
        if song:
            await self.load(classify(song), 0.0, True)

    async def on_spotify_track_loaded(self, track: dict) -> bool:
        """Play a resolved Spotify track on this client's bound device."""
        if self.device_id is None:
            logger.error("Spotify track loaded but no device is ready")
            return False
        uri = track.get("uri") if isinstance(track, dict) else None
        if not uri:
            return False
        reference = classify(uri)
        if reference.kind != MediaKind.TRACK:
            logger.warning(f"Ignoring loaded track with unexpected uri {uri}")
            return False
        logger.info(f"Playing {track.get('name')} - {track.get('artist')}")
        return await self.load(reference, 0.0, True)

    async def on_spotify_playlist_loaded(self, tracks: list) -> None:
        # Listed only; a track plays when picked with play_track()
        if not tracks:
            logger.error("No tracks in playlist")
            self.tracks = []
            return
        self.tracks = [t for t in tracks if isinstance(t, dict) and t.get("uri")]

    async def play_track(self, index: int) -> bool:
        if not 0 <= index < len(self.tracks):
            return False
        return await self.on_spotify_track_loaded(self.tracks[index])

    async def on_error(self, message: str) -> None:
        logger.error(f"Server reported: {message}")

    # local engine events

    async def device_ready(self, device_id: str) -> None:
        """Record the streaming device this client plays on and bind it to the room."""
        self.device_id = device_id
        await self._announce_device()

    async def device_lost(self) -> None:
        self.device_id = None

    async def _announce_device(self) -> None:
        if self.room_id is None or self.device_id is None:
            return
        await self.emitter.emit("spotifyDeviceReady", {"roomId": self.room_id, "deviceId": self.device_id})

    async def on_media_ended(self) -> None:
        if self.room_id is None or self.reference is None:
            return
        if self.reference.is_collection:
            return
        await self.emitter.emit("skip", self.room_id)

    async def report_position(self) -> Optional[float]:
        """Send the local position to the room if it moved enough.

        Returns the reported position, or None if nothing was sent.
        """
        if self.room_id is None or self.reference is None:
            return None
        position = await self.engine.get_position()
        if self._last_reported is not None and abs(position - self._last_reported) < REPORT_THRESHOLD:
            return None
        await self.emitter.emit("timeUpdate", {"roomId": self.room_id, "currentTime": position})
        self._last_reported = position
        return position

    async def report_forever(self, interval: float = 1.0) -> None:
        while True:
            try:
                await self.report_position()
            except PlaybackError:
                logger.debug("Could not read playback position", exc_info=True)
            await self._sleep(interval)
