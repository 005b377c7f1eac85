import asyncio
import functools
import logging
import math
from contextlib import asynccontextmanager

import socketio
import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles

from syncroom.config import STATIC_DIR, get_settings
from syncroom.models.room import MediaKind
from syncroom.services.media import classify
from syncroom.services.session import SessionCoordinator
from syncroom.services.spotify import SpotifyClient, StreamingProviderError, refresh_forever

settings = get_settings()

# Configure logging
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

origins = settings.allowed_origins

sio = socketio.AsyncServer(async_mode='asgi', cors_allowed_origins=origins if origins != ["*"] else "*")
spotify = SpotifyClient(settings.spotify_client_id, settings.spotify_client_secret)
coordinator = SessionCoordinator(sio, spotify=spotify, snapshot_delay=settings.join_snapshot_delay)


@asynccontextmanager
async def lifespan(app: FastAPI):
    refresher = None
    if spotify.is_configured:
        refresher = asyncio.create_task(
            refresh_forever(spotify, settings.token_refresh_interval, settings.token_retry_interval)
        )
    else:
        logger.warning("SPOTIFY_CLIENT_ID/SPOTIFY_CLIENT_SECRET not set; Spotify links will fail to load")
    yield
    if refresher is not None:
        refresher.cancel()
    await coordinator.stop()


app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount("/static", StaticFiles(directory=STATIC_DIR, check_dir=False), name="static")

socket_app = socketio.ASGIApp(sio, app)


def _room_id(data):
    """Events carry the room id either bare or under `roomId`."""
    if isinstance(data, dict):
        data = data.get("roomId")
    return data if isinstance(data, str) and data else None


def _number(value):
    if isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    # NaN and infinities are not valid JSON for browser clients
    return result if math.isfinite(result) else None


def _text(value):
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


# REST API
@app.get("/")
async def index():
    return FileResponse(STATIC_DIR / "index.html")


@app.get("/api/spotify/token")
async def spotify_token():
    try:
        token = await spotify.get_token()
    except StreamingProviderError:
        logger.error("Error getting Spotify token", exc_info=True)
        raise HTTPException(status_code=500, detail="Spotify token not available")
    return {"accessToken": token}


@app.get("/api/spotify/playlist/{playlist_id}")
async def spotify_playlist(playlist_id: str):
    try:
        return await spotify.fetch_playlist(playlist_id)
    except StreamingProviderError:
        logger.error(f"Error fetching playlist {playlist_id}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch playlist")


def guarded(handler):
    """Log and swallow handler failures so one bad event never kills the socket."""
    @functools.wraps(handler)
    async def wrapper(sid, *args):
        try:
            return await handler(sid, *args)
        except Exception as e:
            logger.error(f"Error in {handler.__name__} for {sid}: {e}", exc_info=True)
    return wrapper


# Socket Events
@sio.event
async def connect(sid, environ):
    logger.info(f"Client {sid} connected")


@sio.event
@guarded
async def disconnect(sid, reason=None):
    logger.info(f"Client {sid} disconnected")
    await coordinator.disconnect(sid)


@sio.on("createRoom")
@guarded
async def create_room(sid, data=None):
    await coordinator.create_room(sid)


@sio.on("joinRoom")
@guarded
async def join_room(sid, data=None):
    room_id = _room_id(data)
    if room_id:
        await coordinator.join_room(sid, room_id)


@sio.on("leaveRoom")
@guarded
async def leave_room(sid, data=None):
    room_id = _room_id(data)
    if room_id:
        await coordinator.leave_room(sid, room_id)


@sio.on("play")
@guarded
async def play(sid, data=None):
    room_id = _room_id(data)
    if room_id:
        await coordinator.play(sid, room_id)


@sio.on("pause")
@guarded
async def pause(sid, data=None):
    room_id = _room_id(data)
    if room_id:
        await coordinator.pause(sid, room_id)


@sio.on("seek")
@guarded
async def seek(sid, data=None):
    if not isinstance(data, dict):
        return
    room_id = _room_id(data)
    position = _number(data.get("time"))
    if room_id and position is not None:
        await coordinator.seek(sid, room_id, position)


@sio.on("timeUpdate")
@guarded
async def time_update(sid, data=None):
    if not isinstance(data, dict):
        return
    room_id = _room_id(data)
    position = _number(data.get("currentTime"))
    if room_id and position is not None:
        await coordinator.time_update(sid, room_id, position)


@sio.on("skip")
@guarded
async def skip(sid, data=None):
    room_id = _room_id(data)
    if room_id:
        await coordinator.skip(sid, room_id)


@sio.on("previous")
@guarded
async def previous(sid, data=None):
    room_id = _room_id(data)
    if room_id:
        await coordinator.previous(sid, room_id)


@sio.on("addSong")
@guarded
async def add_song(sid, data=None):
    if not isinstance(data, dict):
        return
    room_id = _room_id(data)
    url = _text(data.get("url"))
    if room_id and url:
        await coordinator.add_song(sid, room_id, url)


@sio.on("addSpotifyTrack")
@guarded
async def add_spotify_track(sid, data=None):
    if not isinstance(data, dict):
        return
    room_id = _room_id(data)
    track_url = _text(data.get("trackUrl"))
    track_id = _text(data.get("trackId"))
    if not track_id and track_url:
        reference = classify(track_url)
        if reference.kind == MediaKind.TRACK:
            track_id = reference.external_id
    if room_id and track_id:
        await coordinator.add_spotify_track(sid, room_id, track_id, track_url)


@sio.on("addSpotifyPlaylist")
@guarded
async def add_spotify_playlist(sid, data=None):
    if not isinstance(data, dict):
        return
    room_id = _room_id(data)
    playlist_url = _text(data.get("playlistUrl"))
    playlist_id = _text(data.get("playlistId"))
    if not playlist_id and playlist_url:
        reference = classify(playlist_url)
        if reference.kind == MediaKind.TRACK_COLLECTION:
            playlist_id = reference.external_id
    if room_id and playlist_id:
        await coordinator.add_spotify_playlist(sid, room_id, playlist_id, playlist_url)


@sio.on("spotifyDeviceReady")
@guarded
async def spotify_device_ready(sid, data=None):
    if not isinstance(data, dict):
        return
    room_id = _room_id(data)
    device_id = _text(data.get("deviceId"))
    if room_id and device_id:
        await coordinator.spotify_device_ready(sid, room_id, device_id)


def run():
    uvicorn.run("syncroom.main:socket_app", host=settings.host, port=settings.port, reload=False)


if __name__ == "__main__":
    run()
