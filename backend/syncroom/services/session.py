"""Room session state machine.

`SessionCoordinator` receives client actions, mutates the matching room and
fans the resulting notifications out over socket.io.

Concurrency notes:
- Every room mutation and the broadcast that announces it happen while
  holding `self._lock`, so clients observe broadcasts in mutation order.
- Calls to the streaming provider are awaited outside the lock. Fields they
  need are read first; results are only broadcast, never written back.
- Actions naming a room that does not exist are dropped silently.
"""
import asyncio
import logging
import time
from typing import Any, Callable, Dict, Optional, Set

from syncroom.models.room import CurrentMedia, MediaKind, MediaReference, PlayState, Room
from syncroom.services import queue
from syncroom.services.media import NoStreamingDevice, classify, resolve_streaming_metadata
from syncroom.services.room import RoomRegistry
from syncroom.services.spotify import CredentialUnavailable, SpotifyClient, StreamingProviderError

logger = logging.getLogger(__name__)

TRACK_ERROR = "Failed to load Spotify track"
PLAYLIST_ERROR = "Failed to load Spotify playlist"


class SessionCoordinator:
    def __init__(
        self,
        sio,
        registry: Optional[RoomRegistry] = None,
        spotify: Optional[SpotifyClient] = None,
        clock: Callable[[], float] = time.time,
        snapshot_delay: float = 0.0,
    ):
        self.sio = sio
        self.registry = registry if registry is not None else RoomRegistry()
        self.spotify = spotify
        self._clock = clock
        self._snapshot_delay = snapshot_delay
        self._lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()

    async def stop(self) -> None:
        """Cancel snapshot deliveries that are still waiting."""
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

    def snapshot(self, room: Room) -> Dict[str, Any]:
        reference = room.current_reference
        if reference is None:
            return {"roomId": room.id, "currentSong": None, "isPlaying": False, "currentTime": 0}

        data = {
            "roomId": room.id,
            "currentSong": reference.raw_url,
            "isPlaying": room.player.is_playing,
            "currentTime": room.player.estimate(self._clock()),
        }
        if reference.is_video:
            data["videoId"] = reference.external_id
        return data

    def _player_payload(self, reference: MediaReference) -> Dict[str, Any]:
        return {"currentSong": reference.raw_url, "currentTime": 0, "isPlaying": True}

    # membership

    async def create_room(self, sid: str) -> str:
        async with self._lock:
            room = self.registry.create_room(sid)
            await self.sio.enter_room(sid, room.id)
            await self.sio.emit("roomCreated", room.id, to=sid)
            await self.sio.emit("userCountUpdate", len(room.members), room=room.id)
        return room.id

    async def join_room(self, sid: str, room_id: str) -> None:
        async with self._lock:
            room = self.registry.add_user(room_id, sid)
            if not room:
                logger.debug(f"Join for unknown room {room_id} from {sid} dropped")
                return
            await self.sio.enter_room(sid, room.id)
            logger.info(f"{sid} joined room {room.id} ({len(room.members)} members)")

            if room.current is None or self._snapshot_delay <= 0:
                await self.sio.emit("roomJoined", self.snapshot(room), to=sid)
            else:
                task = asyncio.create_task(self._deliver_snapshot(sid, room.id))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)

            await self.sio.emit("userJoined", sid, room=room.id)
            await self.sio.emit("userCountUpdate", len(room.members), room=room.id)

    async def _deliver_snapshot(self, sid: str, room_id: str) -> None:
        await asyncio.sleep(self._snapshot_delay)
        async with self._lock:
            room = self.registry.get_room(room_id)
            if not room or sid not in room.members:
                return
            # Position is estimated at send time, not join time
            await self.sio.emit("roomJoined", self.snapshot(room), to=sid)

    async def leave_room(self, sid: str, room_id: str) -> None:
        async with self._lock:
            room = self.registry.remove_user(room_id, sid)
            if not room:
                return
            await self.sio.leave_room(sid, room.id)
            await self.sio.emit("userLeft", sid, room=room.id)
            await self.sio.emit("userCountUpdate", len(room.members), room=room.id)

    async def disconnect(self, sid: str) -> None:
        async with self._lock:
            for room_id, remaining in self.registry.remove_connection_everywhere(sid):
                logger.info(f"{sid} dropped from room {room_id} on disconnect")
                await self.sio.emit("userLeft", sid, room=room_id)
                await self.sio.emit("userCountUpdate", remaining, room=room_id)

    # playback control

    async def play(self, sid: str, room_id: str) -> None:
        async with self._lock:
            room = self.registry.get_room(room_id)
            if not room:
                return
            now = self._clock()
            # Freeze the elapsed time into the position before restarting the clock
            room.player.mark(now, position=room.player.estimate(now), state=PlayState.PLAYING)
            await self.sio.emit("play", room=room.id)

    async def pause(self, sid: str, room_id: str) -> None:
        async with self._lock:
            room = self.registry.get_room(room_id)
            if not room:
                return
            now = self._clock()
            room.player.mark(now, position=room.player.estimate(now), state=PlayState.PAUSED)
            await self.sio.emit("pause", room=room.id)

    async def seek(self, sid: str, room_id: str, position: float) -> None:
        async with self._lock:
            room = self.registry.get_room(room_id)
            if not room:
                return
            room.player.mark(self._clock(), position=position)
            await self.sio.emit("seek", position, room=room.id)

    async def time_update(self, sid: str, room_id: str, position: float) -> None:
        async with self._lock:
            room = self.registry.get_room(room_id)
            if room:
                room.player.mark(self._clock(), position=position)

    async def skip(self, sid: str, room_id: str) -> None:
        await self._step(sid, room_id, "skip", queue.advance)

    async def previous(self, sid: str, room_id: str) -> None:
        await self._step(sid, room_id, "previous", queue.retreat)

    async def _step(self, sid: str, room_id: str, event: str, operation) -> None:
        async with self._lock:
            room = self.registry.get_room(room_id)
            if not room:
                return
            reference = operation(room, self._clock())
            if reference is None:
                return
            await self.sio.emit(event, self._player_payload(reference), room=room.id)

    # media

    async def add_song(self, sid: str, room_id: str, url: str) -> None:
        reference = classify(url)
        async with self._lock:
            room = self.registry.get_room(room_id)
            if not room:
                return
            became_current = queue.append(room, reference, self._clock())
            logger.info(f"Room {room.id}: queued {reference.kind.value} {reference.raw_url}")
            if became_current is not None:
                await self.sio.emit("newSong", reference.raw_url, room=room.id)

        if reference.is_streaming:
            await self._resolve_and_broadcast(sid, room_id, reference.kind, reference.external_id)

    async def add_spotify_track(self, sid: str, room_id: str, track_id: str, track_url: Optional[str] = None) -> None:
        reference = MediaReference(
            kind=MediaKind.TRACK,
            external_id=track_id,
            raw_url=track_url or f"https://open.spotify.com/track/{track_id}",
        )
        if await self._adopt_external(room_id, reference):
            await self._resolve_and_broadcast(sid, room_id, MediaKind.TRACK, track_id)

    async def add_spotify_playlist(self, sid: str, room_id: str, playlist_id: str, playlist_url: Optional[str] = None) -> None:
        reference = MediaReference(
            kind=MediaKind.TRACK_COLLECTION,
            external_id=playlist_id,
            collection_id=playlist_id,
            raw_url=playlist_url or f"https://open.spotify.com/playlist/{playlist_id}",
        )
        if await self._adopt_external(room_id, reference):
            await self._resolve_and_broadcast(sid, room_id, MediaKind.TRACK_COLLECTION, playlist_id)

    async def _adopt_external(self, room_id: str, reference: MediaReference) -> bool:
        """Make `reference` the room's current media if the room has nothing else.

        Returns False when the room does not exist.
        """
        async with self._lock:
            room = self.registry.get_room(room_id)
            if not room:
                return False
            if room.current is None and not room.queue:
                room.current = CurrentMedia.external(reference)
                room.player.restart(self._clock())
                logger.info(f"Room {room.id}: {reference.raw_url} is now current (external)")
            return True

    async def _resolve_and_broadcast(self, sid: str, room_id: str, kind: MediaKind, spotify_id: str) -> None:
        message = TRACK_ERROR if kind == MediaKind.TRACK else PLAYLIST_ERROR

        room = self.registry.get_room(room_id)
        if not room:
            return
        device_id = room.streaming_device_id

        try:
            if self.spotify is None:
                raise CredentialUnavailable("no Spotify client configured")
            if kind == MediaKind.TRACK and not device_id:
                raise NoStreamingDevice(f"no Spotify device available in room {room_id}")
            tracks = await resolve_streaming_metadata(kind, spotify_id, self.spotify)
        except StreamingProviderError:
            logger.error(f"Error resolving Spotify {kind.value} {spotify_id} for room {room_id}", exc_info=True)
            await self.sio.emit("error", message, to=sid)
            return

        # The room may be gone or repopulated by now; emitting to it is harmless
        if kind == MediaKind.TRACK:
            await self.sio.emit("spotifyTrackLoaded", tracks[0].model_dump(), room=room_id)
        else:
            await self.sio.emit("spotifyPlaylistLoaded", [t.model_dump() for t in tracks], room=room_id)

    async def spotify_device_ready(self, sid: str, room_id: str, device_id: str) -> None:
        async with self._lock:
            room = self.registry.get_room(room_id)
            if room:
                room.streaming_device_id = device_id
                logger.info(f"Spotify device {device_id} ready for room {room.id}")
