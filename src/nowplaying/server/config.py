"""Relay configuration loaded from environment variables.

The process entry point calls `load_dotenv()` first so a local `.env` file can
supply these values.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from nowplaying.auth.models.errors import ConfigurationError
from nowplaying.auth.models.flow import DEFAULT_SCOPE

DEFAULT_FRONTEND_URL = "http://localhost:5176"
DEFAULT_PORT = 3000

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class RelayConfig:
    client_id: str
    redirect_uri: str
    client_secret: str | None = None
    use_client_secret: bool = True
    frontend_url: str = DEFAULT_FRONTEND_URL
    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    scope: str = DEFAULT_SCOPE

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> RelayConfig:
        """Build the config from the environment.

        Raises:
            ConfigurationError: If a required setting is missing or malformed
        """
        env = os.environ if environ is None else environ

        client_id = env.get("SPOTIFY_CLIENT_ID")
        redirect_uri = env.get("SPOTIFY_REDIRECT_URI")
        client_secret = env.get("SPOTIFY_CLIENT_SECRET") or None
        use_client_secret = (
            env.get("SPOTIFY_USE_CLIENT_SECRET", "true").strip().lower()
            in _TRUE_VALUES
        )

        missing = [
            name
            for name, value in (
                ("SPOTIFY_CLIENT_ID", client_id),
                ("SPOTIFY_REDIRECT_URI", redirect_uri),
            )
            if not value
        ]
        if use_client_secret and not client_secret:
            missing.append("SPOTIFY_CLIENT_SECRET")
        if missing:
            raise ConfigurationError(
                f"Missing required settings: {', '.join(missing)}"
            )

        try:
            port = int(env.get("PORT", DEFAULT_PORT))
        except ValueError as e:
            raise ConfigurationError(f"PORT must be an integer: {e}") from e

        return cls(
            client_id=client_id,
            redirect_uri=redirect_uri,
            client_secret=client_secret,
            use_client_secret=use_client_secret,
            frontend_url=env.get("FRONTEND_URL") or DEFAULT_FRONTEND_URL,
            host=env.get("HOST") or "127.0.0.1",
            port=port,
            scope=env.get("SPOTIFY_SCOPE") or DEFAULT_SCOPE,
        )

    def describe(self) -> dict[str, str]:
        """Startup summary that never includes the secret itself."""
        return {
            "clientId": "Set" if self.client_id else "Not set",
            "clientSecret": "Set" if self.client_secret else "Not set",
            "useClientSecret": str(self.use_client_secret),
            "redirectUri": self.redirect_uri,
            "frontendUrl": self.frontend_url,
        }
