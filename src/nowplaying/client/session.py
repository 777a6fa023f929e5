"""Client application session.

Wires the store, relay client, lifecycle manager and poller together and
resumes the flow on each landing, the way a browser app resumes on page load:
with `?code=` it completes the exchange, with `?error=` it resets to logged
out, with neither it restores whatever token was stored.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from urllib.parse import parse_qs, urlparse

from nowplaying.auth.models.errors import ConfigurationError, ProviderAuthorizationError
from nowplaying.client.initiator import AuthorizationInitiator
from nowplaying.client.lifecycle import AuthState, TokenLifecycleManager
from nowplaying.client.poller import DEFAULT_POLL_INTERVAL, NowPlayingPoller, TrackListener
from nowplaying.client.relay_client import DEFAULT_RELAY_URL, RelayClient
from nowplaying.client.store import JsonFileStore, MemoryStore, TokenStore

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_FILE = "~/.nowplaying/tokens.json"


@dataclass(frozen=True)
class ClientConfig:
    relay_url: str = DEFAULT_RELAY_URL
    token_file: str = DEFAULT_TOKEN_FILE
    poll_interval: float = DEFAULT_POLL_INTERVAL

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ClientConfig:
        env = os.environ if environ is None else environ
        try:
            poll_interval = float(
                env.get("NOWPLAYING_POLL_INTERVAL", DEFAULT_POLL_INTERVAL)
            )
        except ValueError as e:
            raise ConfigurationError(
                f"NOWPLAYING_POLL_INTERVAL must be a number: {e}"
            ) from e
        return cls(
            relay_url=env.get("NOWPLAYING_RELAY_URL") or DEFAULT_RELAY_URL,
            token_file=env.get("NOWPLAYING_TOKEN_FILE") or DEFAULT_TOKEN_FILE,
            poll_interval=poll_interval,
        )


@dataclass(frozen=True)
class Landing:
    """Query parameters the relay appended when redirecting back."""

    code: str | None = None
    error: str | None = None

    @classmethod
    def from_url(cls, url: str) -> Landing:
        query_params = parse_qs(urlparse(url).query)

        def get_single_param(key: str) -> str | None:
            values = query_params.get(key, [])
            return values[0] if values else None

        return cls(code=get_single_param("code"), error=get_single_param("error"))


class NowPlayingSession:
    def __init__(
        self,
        config: ClientConfig,
        store: TokenStore | None = None,
        relay: RelayClient | None = None,
        on_track: TrackListener | None = None,
    ):
        self.config = config
        self.store = store or TokenStore(
            durable=JsonFileStore(config.token_file), ephemeral=MemoryStore()
        )
        self.relay = relay or RelayClient(config.relay_url)
        self.lifecycle = TokenLifecycleManager(self.store, self.relay)
        self.initiator = AuthorizationInitiator(self.store, self.relay)
        self.poller = NowPlayingPoller(
            self.lifecycle,
            self.relay.current_track,
            on_track=on_track,
            interval=config.poll_interval,
        )

    @property
    def state(self) -> AuthState:
        return self.lifecycle.state

    def login_url(self) -> str:
        """Begin authorization; the caller navigates the user agent here."""
        return self.initiator.start()

    async def resume(self, landing_url: str | None = None) -> AuthState:
        """Resume after a landing (or a plain start) and start polling if possible.

        Raises:
            ProviderAuthorizationError: If the provider reported an error
            OAuth2Error: If the code exchange failed
        """
        landing = Landing.from_url(landing_url) if landing_url else Landing()

        if landing.error:
            logger.error(f"Authorization failed: {landing.error}")
            self.lifecycle.invalidate("provider returned an error")
            raise ProviderAuthorizationError(landing.error)

        if landing.code:
            await self.lifecycle.complete_login(landing.code)
        else:
            self.lifecycle.restore()
            if not self.lifecycle.is_authenticated:
                logger.info("No code or stored token found")

        await self.poller.start()
        return self.lifecycle.state

    async def logout(self) -> None:
        await self.poller.stop()
        self.lifecycle.disconnect()

    async def close(self) -> None:
        await self.poller.stop()
        await self.relay.close()
