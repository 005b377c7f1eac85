"""Spotify Web API access using the client-credentials grant.

`SpotifyClient` holds the process-wide access token. `refresh_forever` keeps
it fresh in the background; request paths call `get_token`, which refreshes
on demand when no valid token is held.
"""
import asyncio
import logging
import time
from typing import Any, Callable, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

TOKEN_URL = "https://accounts.spotify.com/api/token"
API_URL = "https://api.spotify.com/v1"


class StreamingProviderError(Exception):
    """Base class for failures talking to the streaming provider."""


class CredentialUnavailable(StreamingProviderError):
    pass


class ProviderRequestFailed(StreamingProviderError):
    pass


class SpotifyClient:
    def __init__(
        self,
        client_id: Optional[str],
        client_secret: Optional[str],
        clock: Callable[[], float] = time.monotonic,
        timeout: float = 10.0,
    ):
        self._client_id = client_id
        self._client_secret = client_secret
        self._clock = clock
        self._timeout = timeout
        self._access_token: Optional[str] = None
        self._token_expiry = 0.0

    @property
    def is_configured(self) -> bool:
        return bool(self._client_id and self._client_secret)

    @property
    def access_token(self) -> Optional[str]:
        if self._access_token and self._clock() < self._token_expiry:
            return self._access_token
        return None

    async def request_token(self) -> str:
        if not self.is_configured:
            raise CredentialUnavailable("Spotify client credentials are not configured")

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(
                    TOKEN_URL,
                    data={"grant_type": "client_credentials"},
                    auth=(self._client_id, self._client_secret),
                )
            resp.raise_for_status()
            body = resp.json()
        except Exception as e:
            raise CredentialUnavailable(f"token request failed: {e}") from e

        token = body.get("access_token")
        if not token:
            raise CredentialUnavailable("token response carried no access_token")

        expires_in = body.get("expires_in", 3600)
        self._access_token = token
        self._token_expiry = self._clock() + expires_in
        logger.info(f"Spotify access token refreshed (expires in {expires_in}s)")
        return token

    async def get_token(self) -> str:
        token = self.access_token
        if token:
            return token
        return await self.request_token()

    async def _get(self, path: str) -> Dict[str, Any]:
        token = await self.get_token()
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.get(f"{API_URL}{path}", headers={"Authorization": f"Bearer {token}"})
            resp.raise_for_status()
            return resp.json()
        except Exception as e:
            raise ProviderRequestFailed(f"GET {path} failed: {e}") from e

    async def fetch_track(self, track_id: str) -> Dict[str, Any]:
        return await self._get(f"/tracks/{track_id}")

    async def fetch_playlist(self, playlist_id: str) -> Dict[str, Any]:
        return await self._get(f"/playlists/{playlist_id}")


async def refresh_forever(client: SpotifyClient, interval: float, retry_interval: float, sleep=asyncio.sleep):
    """Refresh the token on a fixed schedule, retrying sooner after a failure."""
    while True:
        try:
            await client.request_token()
            delay = interval
        except CredentialUnavailable:
            logger.error("Error refreshing Spotify token", exc_info=True)
            delay = retry_interval
        await sleep(delay)
