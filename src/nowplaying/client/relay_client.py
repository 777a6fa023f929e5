"""HTTP client for the relay's endpoints, used by the client application."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError

from nowplaying.auth.models.errors import (
    ExchangeFailedError,
    MissingParameterError,
    NetworkFailureError,
    ResourceRequestError,
    UnauthorizedError,
)
from nowplaying.auth.models.tokens import TokenResponse, TokenSet
from nowplaying.shared.track import Track

logger = logging.getLogger(__name__)

DEFAULT_RELAY_URL = "http://localhost:3000"


class RelayClient:
    """Talks to the relay: token exchange, refresh and the current track.

    The access token is only ever sent to the relay's /current-track route.
    """

    def __init__(self, base_url: str = DEFAULT_RELAY_URL, timeout: float | None = None):
        self.base_url = base_url.rstrip("/")
        client_options = {"timeout": timeout} if timeout is not None else {}
        self._http_client = httpx.AsyncClient(**client_options)

    def login_url(self, code_challenge: str) -> str:
        """URL of the relay's /login route for a given challenge."""
        params = urlencode(
            {"code_challenge": code_challenge, "code_challenge_method": "S256"}
        )
        return f"{self.base_url}/login?{params}"

    async def exchange_token(self, code: str, code_verifier: str) -> TokenSet:
        """Exchange a forwarded code and the retained verifier for tokens.

        Raises:
            MissingParameterError: Before any request, if either value is empty
            ExchangeFailedError: If the relay reported a failed exchange
            NetworkFailureError: If the relay could not be reached
        """
        if not code or not code_verifier:
            raise MissingParameterError("Missing code or code_verifier")

        logger.info("Exchanging code for token")
        response = await self._post_json(
            "/exchange-token", {"code": code, "code_verifier": code_verifier}
        )
        return self._token_set(response)

    async def refresh_token(self, refresh_token: str) -> TokenSet:
        """Refresh the access token, keeping the old refresh token if not rotated."""
        if not refresh_token:
            raise MissingParameterError("Missing refresh_token")

        logger.info("Refreshing access token")
        response = await self._post_json(
            "/refresh-token", {"refresh_token": refresh_token}
        )
        return self._token_set(response, previous_refresh_token=refresh_token)

    async def current_track(self, access_token: str) -> Track | None:
        """Fetch the current track; None when nothing is playing.

        Raises:
            UnauthorizedError: If the relay answered 401
            ResourceRequestError: For any other non-success status
            NetworkFailureError: If the relay could not be reached
        """
        try:
            response = await self._http_client.get(
                f"{self.base_url}/current-track",
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as e:
            raise NetworkFailureError(f"HTTP error during track fetch: {e}") from e

        if response.status_code == 401:
            raise UnauthorizedError("Access token rejected (401)")

        is_success = 200 <= response.status_code < 300
        if response.status_code == 204 or (is_success and not response.content):
            logger.debug("No track currently playing")
            return None

        body = self._response_body(response)
        if not is_success:
            raise ResourceRequestError(
                f"Track fetch failed with status {response.status_code}",
                status_code=response.status_code,
                body=body,
            )
        return Track.from_wire(body if isinstance(body, dict) else None)

    async def _post_json(self, path: str, payload: dict[str, str]) -> httpx.Response:
        try:
            return await self._http_client.post(f"{self.base_url}{path}", json=payload)
        except httpx.HTTPError as e:
            raise NetworkFailureError(f"HTTP error calling {path}: {e}") from e

    def _token_set(
        self, response: httpx.Response, previous_refresh_token: str | None = None
    ) -> TokenSet:
        body = self._response_body(response)

        if not 200 <= response.status_code < 300:
            logger.error(f"Token request failed with {response.status_code}: {body}")
            message = body.get("error") if isinstance(body, dict) else None
            raise ExchangeFailedError(
                message or "Failed to exchange code for token",
                status_code=response.status_code,
                body=body,
            )

        try:
            token_response = TokenResponse(**body)
        except (TypeError, ValidationError) as e:
            raise ExchangeFailedError(
                f"Invalid token response format: {e}",
                status_code=response.status_code,
                body=body,
            ) from e
        if not token_response.is_success():
            raise ExchangeFailedError(
                "Token response missing required access_token",
                status_code=response.status_code,
                body=body,
            )
        return token_response.to_token_set(previous_refresh_token=previous_refresh_token)

    @staticmethod
    def _response_body(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text

    async def close(self) -> None:
        await self._http_client.aclose()
