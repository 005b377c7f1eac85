from types import SimpleNamespace

import pytest

from syncroom.services import spotify as spotify_module
from syncroom.services.spotify import CredentialUnavailable, ProviderRequestFailed, SpotifyClient, refresh_forever

from helpers import FakeClock


class FakeResp:
    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self._body = body or {}

    def raise_for_status(self):
        if self.status_code >= 400:
            raise RuntimeError(f"HTTP {self.status_code}")

    def json(self):
        return self._body


def fake_httpx(monkeypatch, post=None, get=None):
    """Swap the module's httpx for a stub; returns the list of recorded requests."""
    requests = []

    class FakeClient:
        def __init__(self, *a, **k):
            pass

        async def __aenter__(self):
            return self

        async def __aexit__(self, *a):
            return False

        async def post(self, url, data=None, auth=None):
            requests.append(("POST", url, auth))
            return post()

        async def get(self, url, headers=None):
            requests.append(("GET", url, headers))
            return get()

    monkeypatch.setattr(spotify_module, "httpx", SimpleNamespace(AsyncClient=FakeClient))
    return requests


def token_resp(token="tok-1", expires_in=3600):
    return FakeResp(body={"access_token": token, "expires_in": expires_in})


@pytest.mark.asyncio
async def test_unconfigured_client_has_no_credentials():
    client = SpotifyClient(None, None)
    assert not client.is_configured
    with pytest.raises(CredentialUnavailable):
        await client.get_token()


@pytest.mark.asyncio
async def test_token_is_cached_until_expiry(monkeypatch):
    clock = FakeClock(0)
    requests = fake_httpx(monkeypatch, post=token_resp)
    client = SpotifyClient("id", "secret", clock=clock)

    assert await client.get_token() == "tok-1"
    assert await client.get_token() == "tok-1"
    assert len(requests) == 1
    assert requests[0][2] == ("id", "secret")

    clock.advance(3601)
    assert client.access_token is None
    await client.get_token()
    assert len(requests) == 2


@pytest.mark.asyncio
async def test_token_request_failure_is_credential_error(monkeypatch):
    fake_httpx(monkeypatch, post=lambda: FakeResp(status_code=400))
    client = SpotifyClient("id", "secret")
    with pytest.raises(CredentialUnavailable):
        await client.request_token()


@pytest.mark.asyncio
async def test_fetch_track_sends_bearer_token(monkeypatch):
    requests = fake_httpx(monkeypatch, post=token_resp, get=lambda: FakeResp(body={"name": "x"}))
    client = SpotifyClient("id", "secret")

    assert await client.fetch_track("t1") == {"name": "x"}
    method, url, headers = requests[-1]
    assert method == "GET"
    assert url.endswith("/tracks/t1")
    assert headers == {"Authorization": "Bearer tok-1"}


@pytest.mark.asyncio
async def test_fetch_playlist_failure(monkeypatch):
    fake_httpx(monkeypatch, post=token_resp, get=lambda: FakeResp(status_code=502))
    client = SpotifyClient("id", "secret")
    with pytest.raises(ProviderRequestFailed):
        await client.fetch_playlist("pl1")


class StopLoop(Exception):
    pass


@pytest.mark.asyncio
async def test_refresh_schedule_backs_off_on_failure(monkeypatch):
    responses = iter([token_resp(), FakeResp(status_code=500), token_resp("tok-2")])
    fake_httpx(monkeypatch, post=lambda: next(responses))
    delays = []

    async def fake_sleep(delay):
        delays.append(delay)
        if len(delays) == 3:
            raise StopLoop()

    client = SpotifyClient("id", "secret")

    with pytest.raises(StopLoop):
        await refresh_forever(client, interval=3000, retry_interval=60, sleep=fake_sleep)

    assert delays == [3000, 60, 3000]
    assert client.access_token == "tok-2"
