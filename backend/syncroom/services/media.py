import logging
import re
from typing import Any, Dict, List

from pydantic import ValidationError

from syncroom.models.room import MediaKind, MediaReference, TrackInfo
from syncroom.services.spotify import ProviderRequestFailed, SpotifyClient, StreamingProviderError

logger = logging.getLogger(__name__)

YOUTUBE_HOST_RE = re.compile(r"^(?:https?://)?(?:[\w-]+\.)*(?:youtube\.com|youtube-nocookie\.com|youtu\.be)(?:[/?#]|$)", re.IGNORECASE)
YOUTUBE_ID_RE = re.compile(r"^.*(?:youtu\.be/|v/|u/\w/|embed/|shorts/|watch\?v=|&v=)([^#&?/]*)")
YOUTUBE_LIST_RE = re.compile(r"[&?]list=([^&#]+)")

SPOTIFY_URL_RE = re.compile(r"open\.spotify\.com/(?:intl-[\w-]+/)?(track|playlist)/([a-zA-Z0-9]+)")
SPOTIFY_URI_RE = re.compile(r"^spotify:(track|playlist):([a-zA-Z0-9]+)$")

VIDEO_ID_LENGTH = 11


class EmptyCollection(StreamingProviderError):
    pass


class NoStreamingDevice(StreamingProviderError):
    pass


def _classify_youtube(url: str) -> MediaReference:
    match = YOUTUBE_ID_RE.match(url)
    video_id = match.group(1) if match and len(match.group(1)) == VIDEO_ID_LENGTH else None
    list_match = YOUTUBE_LIST_RE.search(url)
    list_id = list_match.group(1) if list_match else None

    if list_id:
        return MediaReference(
            kind=MediaKind.VIDEO_COLLECTION,
            external_id=video_id or list_id,
            collection_id=list_id,
            raw_url=url,
        )
    if video_id:
        return MediaReference(kind=MediaKind.VIDEO, external_id=video_id, raw_url=url)
    return MediaReference(raw_url=url)


def classify(url: str) -> MediaReference:
    """Classify a user-submitted link.

    Unrecognized shapes come back as UNKNOWN with only `raw_url` set; that is
    not an error.
    """
    url = url.strip()

    match = SPOTIFY_URL_RE.search(url) or SPOTIFY_URI_RE.match(url)
    if match:
        kind = MediaKind.TRACK if match.group(1) == "track" else MediaKind.TRACK_COLLECTION
        spotify_id = match.group(2)
        return MediaReference(
            kind=kind,
            external_id=spotify_id,
            collection_id=spotify_id if kind == MediaKind.TRACK_COLLECTION else None,
            raw_url=url,
        )

    if YOUTUBE_HOST_RE.match(url):
        return _classify_youtube(url)

    return MediaReference(raw_url=url)


def _track_info(track: Dict[str, Any]) -> TrackInfo:
    try:
        artists = track.get("artists") or []
        return TrackInfo(
            name=track.get("name") or "",
            artist=artists[0].get("name") if artists else None,
            uri=track.get("uri") or "",
            duration_ms=track.get("duration_ms"),
            preview_url=track.get("preview_url"),
        )
    except (AttributeError, TypeError, KeyError, IndexError, ValidationError) as e:
        raise ProviderRequestFailed(f"unexpected track payload: {e}") from e


async def resolve_streaming_metadata(kind: MediaKind, spotify_id: str, client: SpotifyClient) -> List[TrackInfo]:
    """Fetch track metadata for a single track or every playable playlist entry.

    Raises:
        StreamingProviderError: credentials missing, provider failure, or a
            playlist with no playable tracks.
    """
    if kind == MediaKind.TRACK:
        track = await client.fetch_track(spotify_id)
        if not isinstance(track, dict) or not track.get("uri"):
            raise EmptyCollection(f"track {spotify_id} returned no playable track")
        return [_track_info(track)]

    if kind == MediaKind.TRACK_COLLECTION:
        playlist = await client.fetch_playlist(spotify_id)
        try:
            items = ((playlist or {}).get("tracks") or {}).get("items")
        except AttributeError as e:
            raise ProviderRequestFailed(f"unexpected playlist payload: {e}") from e
        if items is None:
            raise EmptyCollection(f"playlist {spotify_id} returned no track listing")
        if not isinstance(items, list):
            raise ProviderRequestFailed(f"unexpected playlist payload for {spotify_id}")
        # Removed or region-blocked entries come back without a track
        tracks = [_track_info(item["track"]) for item in items if isinstance(item, dict) and item.get("track")]
        skipped = len(items) - len(tracks)
        if skipped:
            logger.debug(f"Playlist {spotify_id}: skipped {skipped} entries without a track")
        if not tracks:
            raise EmptyCollection(f"no tracks found in playlist {spotify_id}")
        return tracks

    raise ValueError(f"not a streaming media kind: {kind}")
