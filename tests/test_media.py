import pytest

from syncroom.models.room import MediaKind
from syncroom.services.media import EmptyCollection, classify, resolve_streaming_metadata
from syncroom.services.spotify import ProviderRequestFailed

from helpers import FakeSpotify, spotify_track

VIDEO_ID = "dQw4w9WgXcQ"


@pytest.mark.parametrize("url", [
    f"https://www.youtube.com/watch?v={VIDEO_ID}",
    f"https://youtu.be/{VIDEO_ID}",
    f"https://www.youtube.com/embed/{VIDEO_ID}",
    f"https://m.youtube.com/watch?feature=share&v={VIDEO_ID}",
    f"youtube.com/watch?v={VIDEO_ID}&t=42",
])
def test_video_link_shapes_share_external_id(url):
    reference = classify(url)
    assert reference.kind == MediaKind.VIDEO
    assert reference.external_id == VIDEO_ID
    assert reference.raw_url == url


def test_video_in_playlist_carries_collection_id():
    reference = classify(f"https://www.youtube.com/watch?v={VIDEO_ID}&list=PLxyz123")
    assert reference.kind == MediaKind.VIDEO_COLLECTION
    assert reference.external_id == VIDEO_ID
    assert reference.collection_id == "PLxyz123"


def test_playlist_only_link():
    reference = classify("https://www.youtube.com/playlist?list=PLxyz123")
    assert reference.kind == MediaKind.VIDEO_COLLECTION
    assert reference.external_id == "PLxyz123"
    assert reference.collection_id == "PLxyz123"


def test_video_id_of_wrong_length_is_unknown():
    reference = classify("https://www.youtube.com/watch?v=short")
    assert reference.kind == MediaKind.UNKNOWN


@pytest.mark.parametrize("url,kind,spotify_id", [
    ("https://open.spotify.com/track/4uLU6hMCjMI75M1A2tKUQC", MediaKind.TRACK, "4uLU6hMCjMI75M1A2tKUQC"),
    ("https://open.spotify.com/track/4uLU6hMCjMI75M1A2tKUQC?si=abc", MediaKind.TRACK, "4uLU6hMCjMI75M1A2tKUQC"),
    ("https://open.spotify.com/intl-de/track/4uLU6hMCjMI75M1A2tKUQC", MediaKind.TRACK, "4uLU6hMCjMI75M1A2tKUQC"),
    ("https://open.spotify.com/playlist/37i9dQZF1DXcBWIGoYBM5M", MediaKind.TRACK_COLLECTION, "37i9dQZF1DXcBWIGoYBM5M"),
    ("spotify:playlist:37i9dQZF1DXcBWIGoYBM5M", MediaKind.TRACK_COLLECTION, "37i9dQZF1DXcBWIGoYBM5M"),
])
def test_spotify_links(url, kind, spotify_id):
    reference = classify(url)
    assert reference.kind == kind
    assert reference.external_id == spotify_id
    assert reference.is_streaming


@pytest.mark.parametrize("url", [
    "https://example.com/watch?v=dQw4w9WgXcQ",
    "https://open.spotify.com/album/1DFixLWuPkv3KT3TnV35m3",
    "not a url at all",
])
def test_unrecognized_links_are_unknown(url):
    reference = classify(url)
    assert reference.kind == MediaKind.UNKNOWN
    assert reference.external_id == ""
    assert reference.raw_url == url


@pytest.mark.asyncio
async def test_resolve_single_track_uses_first_artist():
    client = FakeSpotify(track=spotify_track(name="Sandstorm", artist="Darude", track_id="t1"))
    tracks = await resolve_streaming_metadata(MediaKind.TRACK, "t1", client)

    assert len(tracks) == 1
    assert tracks[0].name == "Sandstorm"
    assert tracks[0].artist == "Darude"
    assert tracks[0].uri == "spotify:track:t1"
    assert client.calls == [("track", "t1")]


@pytest.mark.asyncio
async def test_resolve_playlist_skips_entries_without_track():
    items = [
        {"track": spotify_track(name="One", track_id="1")},
        {"track": None},
        {"track": spotify_track(name="Three", track_id="3")},
    ]
    client = FakeSpotify(playlist={"tracks": {"items": items}})

    tracks = await resolve_streaming_metadata(MediaKind.TRACK_COLLECTION, "pl", client)

    assert len(tracks) == len(items) - 1
    assert [t.name for t in tracks] == ["One", "Three"]


@pytest.mark.asyncio
async def test_resolve_playlist_with_no_playable_tracks_fails():
    client = FakeSpotify(playlist={"tracks": {"items": [{"track": None}]}})
    with pytest.raises(EmptyCollection):
        await resolve_streaming_metadata(MediaKind.TRACK_COLLECTION, "pl", client)


@pytest.mark.asyncio
async def test_resolve_propagates_provider_failure():
    client = FakeSpotify(error=ProviderRequestFailed("503"))
    with pytest.raises(ProviderRequestFailed):
        await resolve_streaming_metadata(MediaKind.TRACK, "t1", client)


@pytest.mark.asyncio
async def test_resolve_rejects_video_kinds():
    with pytest.raises(ValueError):
        await resolve_streaming_metadata(MediaKind.VIDEO, VIDEO_ID, FakeSpotify())


@pytest.mark.asyncio
@pytest.mark.parametrize("track", [
    {"name": "x", "uri": "spotify:track:t1", "artists": ["Not A Dict"]},
    {"name": ["x"], "uri": "spotify:track:t1", "artists": []},
])
async def test_resolve_malformed_track_is_provider_failure(track):
    with pytest.raises(ProviderRequestFailed):
        await resolve_streaming_metadata(MediaKind.TRACK, "t1", FakeSpotify(track=track))


@pytest.mark.asyncio
@pytest.mark.parametrize("playlist", [
    {"tracks": {"items": "nope"}},
    {"tracks": ["not", "a", "dict"]},
    {"tracks": {"items": [{"track": {"uri": "spotify:track:1", "artists": [42]}}]}},
])
async def test_resolve_malformed_playlist_is_provider_failure(playlist):
    with pytest.raises(ProviderRequestFailed):
        await resolve_streaming_metadata(MediaKind.TRACK_COLLECTION, "pl", FakeSpotify(playlist=playlist))
