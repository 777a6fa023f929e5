from unittest.mock import AsyncMock
from urllib.parse import parse_qs, urlparse

import pytest

from nowplaying.auth.models.errors import ConfigurationError, ProviderAuthorizationError
from nowplaying.auth.models.tokens import TokenSet
from nowplaying.auth.primitives.pkce import derive_challenge
from nowplaying.client.initiator import AuthorizationInitiator
from nowplaying.client.lifecycle import AuthState
from nowplaying.client.relay_client import RelayClient
from nowplaying.client.session import ClientConfig, Landing, NowPlayingSession


@pytest.fixture
def relay():
    relay = AsyncMock(spec=RelayClient)
    relay.login_url = RelayClient("http://localhost:3000").login_url
    return relay


@pytest.fixture
def fresh_tokens():
    return TokenSet(access_token="AT1", expires_in=3600, refresh_token="RT1")


@pytest.fixture
def session(store, relay):
    config = ClientConfig(relay_url="http://localhost:3000", poll_interval=60.0)
    return NowPlayingSession(config, store=store, relay=relay)


class TestAuthorizationInitiator:
    def test_verifier_is_stored_before_redirect(self, store):
        # Arrange
        initiator = AuthorizationInitiator(store, RelayClient("http://localhost:3000"))

        # Act
        url = initiator.start()

        # Assert
        verifier = store.load_verifier()
        assert verifier is not None
        params = parse_qs(urlparse(url).query)
        assert params["code_challenge"] == [derive_challenge(verifier)]
        assert params["code_challenge_method"] == ["S256"]

    def test_new_login_replaces_pending_verifier(self, store):
        initiator = AuthorizationInitiator(store, RelayClient("http://localhost:3000"))

        initiator.start()
        first = store.load_verifier()
        initiator.start()

        assert store.load_verifier() != first


class TestLanding:
    def test_code(self):
        assert Landing.from_url("http://localhost:5176/?code=AQB") == Landing(code="AQB")

    def test_error(self):
        landing = Landing.from_url("http://localhost:5176?error=access_denied")

        assert landing == Landing(error="access_denied")

    def test_plain(self):
        assert Landing.from_url("http://localhost:5176/") == Landing()


class TestNowPlayingSession:
    async def test_landing_with_code_logs_in_and_polls(self, session, store, relay):
        # Arrange
        session.login_url()
        verifier = store.load_verifier()
        relay.exchange_token.return_value = TokenSet(
            access_token="AT1", expires_in=3600, refresh_token="RT1"
        )
        relay.current_track.return_value = None

        # Act
        state = await session.resume("http://localhost:5176/?code=XYZ")

        # Assert
        assert state is AuthState.VALID
        relay.exchange_token.assert_awaited_once_with("XYZ", verifier)
        assert session.poller.running

        # Cleanup
        await session.close()
        assert not session.poller.running

    async def test_landing_with_error_resets_to_logged_out(self, session, store):
        # Arrange
        session.login_url()

        # Act & Assert
        with pytest.raises(ProviderAuthorizationError) as exc_info:
            await session.resume("http://localhost:5176/?error=access_denied")

        assert exc_info.value.error == "access_denied"
        assert session.state is AuthState.INVALID
        assert store.load_verifier() is None
        assert not session.poller.running

    async def test_plain_start_restores_stored_token(
        self, session, store, relay, fresh_tokens
    ):
        # Arrange
        store.save_tokens(fresh_tokens)
        relay.current_track.return_value = None

        # Act
        state = await session.resume()

        # Assert
        assert state is AuthState.VALID
        assert session.poller.running
        await session.close()

    async def test_plain_start_without_token(self, session):
        assert await session.resume() is AuthState.UNAUTHENTICATED
        assert not session.poller.running

    async def test_logout(self, session, store, relay, fresh_tokens):
        # Arrange
        store.save_tokens(fresh_tokens)
        relay.current_track.return_value = None
        await session.resume()

        # Act
        await session.logout()

        # Assert
        assert session.state is AuthState.INVALID
        assert store.load_tokens() is None
        assert not session.poller.running


class TestClientConfig:
    def test_defaults(self):
        config = ClientConfig.from_env({})

        assert config.relay_url == "http://localhost:3000"
        assert config.poll_interval == 30.0

    def test_overrides(self):
        config = ClientConfig.from_env(
            {
                "NOWPLAYING_RELAY_URL": "https://relay.example.com",
                "NOWPLAYING_POLL_INTERVAL": "5",
                "NOWPLAYING_TOKEN_FILE": "/tmp/tokens.json",
            }
        )

        assert config.relay_url == "https://relay.example.com"
        assert config.poll_interval == 5.0
        assert config.token_file == "/tmp/tokens.json"

    def test_invalid_interval(self):
        with pytest.raises(ConfigurationError):
            ClientConfig.from_env({"NOWPLAYING_POLL_INTERVAL": "often"})
