"""Server-side client for Spotify's currently-playing endpoint."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from nowplaying.auth.models.errors import (
    NetworkFailureError,
    ResourceRequestError,
    UnauthorizedError,
)
from nowplaying.shared.track import Track, track_from_currently_playing

logger = logging.getLogger(__name__)

CURRENTLY_PLAYING_URL = "https://api.spotify.com/v1/me/player/currently-playing"


class PlayerClient:
    """Fetches the user's current track with a bearer token."""

    def __init__(
        self, endpoint: str = CURRENTLY_PLAYING_URL, timeout: float | None = None
    ):
        self.endpoint = endpoint
        client_options = {"timeout": timeout} if timeout is not None else {}
        self._http_client = httpx.AsyncClient(**client_options)

    async def current_track(self, access_token: str) -> Track | None:
        """Return the current track, or None when nothing is playing.

        Raises:
            UnauthorizedError: If the provider answered 401
            ResourceRequestError: For any other non-success status
            NetworkFailureError: If the provider could not be reached
        """
        try:
            response = await self._http_client.get(
                self.endpoint,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as e:
            logger.error(f"Track fetch failed: {e}")
            raise NetworkFailureError(f"HTTP error during track fetch: {e}") from e

        if response.status_code == 401:
            raise UnauthorizedError("Provider rejected the access token")

        is_success = 200 <= response.status_code < 300
        if response.status_code == 204 or (is_success and not response.content):
            logger.debug("No track currently playing (204 or empty response)")
            return None

        body = self._response_body(response)
        if not is_success:
            logger.warning(f"Track fetch failed with {response.status_code}: {body}")
            raise ResourceRequestError(
                "Spotify API error during track fetch",
                status_code=response.status_code,
                body=body,
            )

        return track_from_currently_playing(body if isinstance(body, dict) else None)

    @staticmethod
    def _response_body(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text

    async def close(self) -> None:
        await self._http_client.aclose()
