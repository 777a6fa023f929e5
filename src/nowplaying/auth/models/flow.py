"""Authorization request models for the Spotify PKCE flow."""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlencode

from nowplaying.auth.models.errors import MissingParameterError

SPOTIFY_AUTHORIZE_URL = "https://accounts.spotify.com/authorize"
DEFAULT_SCOPE = "user-read-currently-playing user-read-playback-state"


@dataclass(frozen=True)
class AuthorizationRequest:
    """Authorization request parameters sent to the provider."""

    client_id: str
    redirect_uri: str
    code_challenge: str
    code_challenge_method: str = "S256"
    scope: str | None = DEFAULT_SCOPE
    authorization_endpoint: str = SPOTIFY_AUTHORIZE_URL

    def build_authorization_url(self) -> str:
        """Build the complete, URL-encoded authorization URL.

        Raises:
            MissingParameterError: If the challenge is empty
        """
        if not self.code_challenge:
            raise MissingParameterError("code_challenge must not be empty")

        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "code_challenge": self.code_challenge,
            "code_challenge_method": self.code_challenge_method,
        }
        if self.scope:
            params["scope"] = self.scope

        return f"{self.authorization_endpoint}?{urlencode(params)}"


def build_authorization_url(
    challenge: str,
    client_id: str,
    redirect_uri: str,
    scope: str | None = DEFAULT_SCOPE,
    authorization_endpoint: str = SPOTIFY_AUTHORIZE_URL,
) -> str:
    return AuthorizationRequest(
        client_id=client_id,
        redirect_uri=redirect_uri,
        code_challenge=challenge,
        scope=scope,
        authorization_endpoint=authorization_endpoint,
    ).build_authorization_url()
