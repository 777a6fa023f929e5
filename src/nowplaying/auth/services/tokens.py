"""Server-side token exchange against the provider's token endpoint.

Implements the authorization-code grant with PKCE (RFC 6749 Section 4.1.3,
RFC 7636) and the refresh grant (RFC 6749 Section 6). Runs inside the relay so
that the confidential client secret never reaches the client application.
"""

from __future__ import annotations

import base64
import logging
from typing import Any

import httpx
from pydantic import ValidationError

from nowplaying.auth.models.errors import (
    ExchangeFailedError,
    MissingParameterError,
    NetworkFailureError,
)
from nowplaying.auth.models.tokens import (
    RefreshTokenRequest,
    TokenRequest,
    TokenResponse,
    TokenSet,
)

logger = logging.getLogger(__name__)

SPOTIFY_TOKEN_URL = "https://accounts.spotify.com/api/token"


class TokenExchanger:
    """Exchanges authorization codes and refresh tokens for TokenSets.

    Every request is a single form-encoded POST. When `use_client_secret` is on,
    the request is additionally authenticated with HTTP Basic client
    credentials, since PKCE alone is not enough for confidential web clients
    at every provider.
    """

    def __init__(
        self,
        client_id: str,
        redirect_uri: str,
        client_secret: str | None = None,
        use_client_secret: bool = True,
        token_endpoint: str = SPOTIFY_TOKEN_URL,
        timeout: float | None = None,
    ):
        """Initialize the token exchanger.

        Args:
            client_id: Provider client identifier
            redirect_uri: Redirect URI registered with the provider
            client_secret: Confidential client secret
            use_client_secret: Send HTTP Basic client credentials
            token_endpoint: Provider token endpoint
            timeout: HTTP timeout in seconds, httpx default when None
        """
        self.client_id = client_id
        self.redirect_uri = redirect_uri
        self.token_endpoint = token_endpoint
        self._client_secret = client_secret
        self.use_client_secret = use_client_secret and bool(client_secret)

        client_options = {"timeout": timeout} if timeout is not None else {}
        self._http_client = httpx.AsyncClient(**client_options)

    async def exchange(self, code: str, verifier: str) -> TokenSet:
        """Exchange an authorization code and its PKCE verifier for tokens.

        Raises:
            MissingParameterError: If code or verifier is empty
            ExchangeFailedError: If the provider rejected the exchange
            NetworkFailureError: If the provider could not be reached
        """
        if not code or not verifier:
            raise MissingParameterError("Missing code or code_verifier")

        token_request = TokenRequest(
            token_endpoint=self.token_endpoint,
            code=code,
            redirect_uri=self.redirect_uri,
            client_id=self.client_id,
            code_verifier=verifier,
        )
        logger.debug(f"Exchanging authorization code at {self.token_endpoint}")

        token_response = await self._post(token_request.to_form_data())
        logger.info("Token exchange successful")
        return token_response.to_token_set()

    async def refresh(self, refresh_token: str) -> TokenSet:
        """Obtain a new access token with a refresh token.

        The supplied refresh token is carried forward when the provider does
        not rotate it.

        Raises:
            MissingParameterError: If refresh_token is empty
            ExchangeFailedError: If the provider rejected the refresh
            NetworkFailureError: If the provider could not be reached
        """
        if not refresh_token:
            raise MissingParameterError("Missing refresh_token")

        refresh_request = RefreshTokenRequest(
            token_endpoint=self.token_endpoint,
            refresh_token=refresh_token,
            client_id=self.client_id,
        )
        logger.debug(f"Refreshing access token at {self.token_endpoint}")

        token_response = await self._post(refresh_request.to_form_data())
        logger.info("Token refresh successful")
        return token_response.to_token_set(previous_refresh_token=refresh_token)

    async def _post(self, form_data: dict[str, str]) -> TokenResponse:
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
        }
        if self.use_client_secret:
            headers["Authorization"] = self._basic_auth_header()

        logger.debug(
            f"Token request: grant_type={form_data['grant_type']}, "
            f"client_id={form_data['client_id']}, "
            f"client_auth={'basic' if self.use_client_secret else 'none'}"
        )

        try:
            response = await self._http_client.post(
                self.token_endpoint,
                data=form_data,
                headers=headers,
            )
        except httpx.HTTPError as e:
            logger.error(f"Could not reach token endpoint: {e}")
            raise NetworkFailureError(f"HTTP error during token request: {e}") from e

        return self._parse_token_response(response)

    def _parse_token_response(self, response: httpx.Response) -> TokenResponse:
        """Parse a token endpoint response (RFC 6749 Section 5).

        Raises:
            ExchangeFailedError: For error statuses and malformed success bodies
        """
        body = self._response_body(response)

        if not 200 <= response.status_code < 300:
            logger.warning(
                f"Token request failed with {response.status_code}: {body}"
            )
            raise ExchangeFailedError(
                "Failed to exchange code for token",
                status_code=response.status_code,
                body=body,
            )

        if not isinstance(body, dict) or not body.get("access_token"):
            raise ExchangeFailedError(
                "Token response missing required access_token",
                status_code=response.status_code,
                body=body,
            )

        try:
            return TokenResponse(**body)
        except ValidationError as e:
            raise ExchangeFailedError(
                f"Invalid token response format: {e}",
                status_code=response.status_code,
                body=body,
            ) from e

    @staticmethod
    def _response_body(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text

    def _basic_auth_header(self) -> str:
        credentials = f"{self.client_id}:{self._client_secret}".encode()
        return f"Basic {base64.b64encode(credentials).decode('ascii')}"

    async def close(self) -> None:
        """Close the HTTP client and clean up resources."""
        await self._http_client.aclose()
