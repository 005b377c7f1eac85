from collections import defaultdict


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeSio:
    """Records emits and delivers them to whoever is in the target room at emit time."""

    def __init__(self):
        self.rooms = defaultdict(set)
        self.emitted = []
        self.inbox = defaultdict(list)

    async def enter_room(self, sid, room):
        self.rooms[room].add(sid)

    async def leave_room(self, sid, room):
        self.rooms[room].discard(sid)

    async def emit(self, event, data=None, to=None, room=None, skip_sid=None):
        self.emitted.append((event, data, to, room))
        if to is not None:
            recipients = {to}
        else:
            recipients = set(self.rooms.get(room, set()))
        recipients.discard(skip_sid)
        for sid in recipients:
            self.inbox[sid].append((event, data))

    def events(self, sid, name):
        return [data for event, data in self.inbox[sid] if event == name]


class FakeSpotify:
    def __init__(self, track=None, playlist=None, error=None):
        self.track = track
        self.playlist = playlist
        self.error = error
        self.calls = []

    async def fetch_track(self, track_id):
        self.calls.append(("track", track_id))
        if self.error:
            raise self.error
        return self.track

    async def fetch_playlist(self, playlist_id):
        self.calls.append(("playlist", playlist_id))
        if self.error:
            raise self.error
        return self.playlist


def spotify_track(name="Song", artist="Artist", track_id="abc"):
    return {
        "name": name,
        "artists": [{"name": artist}, {"name": "Someone Else"}],
        "uri": f"spotify:track:{track_id}",
        "duration_ms": 200000,
        "preview_url": None,
    }
