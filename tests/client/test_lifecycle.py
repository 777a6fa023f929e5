"""Tests for the token lifecycle state machine."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from nowplaying.auth.models.errors import (
    ExchangeFailedError,
    MissingParameterError,
    NetworkFailureError,
    UnauthorizedError,
)
from nowplaying.auth.models.tokens import TokenSet
from nowplaying.client.lifecycle import AuthState
from nowplaying.client.store import TOKENS_KEY


class TestRestore:
    def test_initial_state_is_unauthenticated(self, lifecycle):
        assert lifecycle.state is AuthState.UNAUTHENTICATED
        assert lifecycle.restore() is AuthState.UNAUTHENTICATED

    def test_stored_token_is_valid(self, lifecycle, store, valid_tokens):
        store.save_tokens(valid_tokens)

        assert lifecycle.restore() is AuthState.VALID
        assert lifecycle.tokens == valid_tokens

    def test_stored_token_past_expiry_is_expired(
        self, lifecycle, store, valid_tokens, clock
    ):
        store.save_tokens(valid_tokens)
        clock.advance(3600)

        assert lifecycle.restore() is AuthState.EXPIRED

    def test_non_dict_stored_record_is_unauthenticated(self, lifecycle, store):
        store.durable.set(TOKENS_KEY, "garbage")

        assert lifecycle.restore() is AuthState.UNAUTHENTICATED
        assert store.durable.get(TOKENS_KEY) is None


class TestCompleteLogin:
    async def test_exchange_stores_tokens(self, lifecycle, store, grants, clock):
        # Arrange
        store.save_verifier("V1")
        grants.exchange_token.return_value = TokenSet(
            access_token="AT1", expires_in=3600, refresh_token="RT1", issued_at=0.0
        )

        # Act
        tokens = await lifecycle.complete_login("XYZ")

        # Assert
        grants.exchange_token.assert_awaited_once_with("XYZ", "V1")
        assert lifecycle.state is AuthState.VALID
        assert tokens.access_token == "AT1"
        assert tokens.refresh_token == "RT1"
        assert tokens.expires_at == clock.now + 3600
        assert store.load_tokens() == tokens
        assert store.load_verifier() is None

    async def test_missing_verifier_tears_down(self, lifecycle, store, grants):
        # Act & Assert
        with pytest.raises(MissingParameterError):
            await lifecycle.complete_login("XYZ")

        grants.exchange_token.assert_not_awaited()
        assert lifecycle.state is AuthState.INVALID

    async def test_failed_exchange_clears_verifier(self, lifecycle, store, grants):
        # Arrange
        store.save_verifier("V1")
        grants.exchange_token.side_effect = ExchangeFailedError(
            "rejected", status_code=400, body={"error": "invalid_grant"}
        )

        # Act & Assert
        with pytest.raises(ExchangeFailedError):
            await lifecycle.complete_login("XYZ")

        assert lifecycle.state is AuthState.INVALID
        assert store.load_verifier() is None
        assert store.load_tokens() is None

    async def test_code_cannot_be_exchanged_twice(self, lifecycle, store, grants):
        # Arrange
        store.save_verifier("V1")
        grants.exchange_token.return_value = TokenSet(access_token="AT1")
        await lifecycle.complete_login("XYZ")

        # Act & Assert - the verifier is gone after the first attempt
        with pytest.raises(MissingParameterError):
            await lifecycle.complete_login("XYZ")

        assert grants.exchange_token.await_count == 1


class TestGetValidToken:
    async def test_valid_token_is_returned_without_refresh(
        self, lifecycle, store, grants, valid_tokens
    ):
        store.save_tokens(valid_tokens)
        lifecycle.restore()

        assert await lifecycle.get_valid_token() == "AT1"
        grants.refresh_token.assert_not_awaited()

    async def test_unauthenticated_raises(self, lifecycle):
        with pytest.raises(UnauthorizedError):
            await lifecycle.get_valid_token()

    async def test_expired_token_is_refreshed_once(
        self, lifecycle, store, grants, valid_tokens, clock
    ):
        # Arrange
        store.save_tokens(valid_tokens)
        lifecycle.restore()
        clock.advance(3600)
        grants.refresh_token.return_value = TokenSet(
            access_token="AT2", expires_in=3600, refresh_token="RT2"
        )

        # Act
        token = await lifecycle.get_valid_token()

        # Assert
        assert token == "AT2"
        grants.refresh_token.assert_awaited_once_with("RT1")
        assert lifecycle.state is AuthState.VALID
        assert lifecycle.tokens.expires_at == clock.now + 3600
        assert store.load_tokens().refresh_token == "RT2"

    async def test_refresh_without_rotation_keeps_refresh_token(
        self, lifecycle, store, grants, valid_tokens, clock
    ):
        # Arrange
        store.save_tokens(valid_tokens)
        lifecycle.restore()
        clock.advance(4000)
        grants.refresh_token.return_value = TokenSet(access_token="AT2", expires_in=3600)

        # Act
        await lifecycle.get_valid_token()

        # Assert
        assert lifecycle.tokens.refresh_token == "RT1"
        assert store.load_tokens().refresh_token == "RT1"

    @pytest.mark.parametrize(
        "error",
        [
            ExchangeFailedError("revoked", status_code=400, body={}),
            NetworkFailureError("unreachable"),
        ],
    )
    async def test_failed_refresh_invalidates(
        self, lifecycle, store, grants, valid_tokens, clock, error
    ):
        # Arrange
        store.save_tokens(valid_tokens)
        lifecycle.restore()
        clock.advance(3600)
        grants.refresh_token.side_effect = error

        # Act & Assert
        with pytest.raises(UnauthorizedError):
            await lifecycle.get_valid_token()

        assert lifecycle.state is AuthState.INVALID
        assert store.load_tokens() is None
        grants.refresh_token.assert_awaited_once()

    async def test_expired_without_refresh_token_invalidates(
        self, lifecycle, store, grants, clock
    ):
        store.save_tokens(TokenSet(access_token="AT1", issued_at=clock.now))
        lifecycle.restore()
        clock.advance(3600)

        with pytest.raises(UnauthorizedError):
            await lifecycle.get_valid_token()

        grants.refresh_token.assert_not_awaited()
        assert lifecycle.state is AuthState.INVALID

    async def test_concurrent_callers_share_one_refresh(
        self, lifecycle, store, grants, valid_tokens, clock
    ):
        # Arrange
        store.save_tokens(valid_tokens)
        lifecycle.restore()
        clock.advance(3600)
        release = asyncio.Event()

        async def slow_refresh(refresh_token):
            await release.wait()
            return TokenSet(access_token="AT2", expires_in=3600)

        grants.refresh_token.side_effect = slow_refresh

        # Act
        first = asyncio.create_task(lifecycle.get_valid_token())
        second = asyncio.create_task(lifecycle.get_valid_token())
        await asyncio.sleep(0)
        release.set()
        tokens = await asyncio.gather(first, second)

        # Assert
        assert tokens == ["AT2", "AT2"]
        grants.refresh_token.assert_awaited_once()


class TestCallProtected:
    async def test_operation_receives_current_token(
        self, lifecycle, store, valid_tokens
    ):
        store.save_tokens(valid_tokens)
        lifecycle.restore()
        operation = AsyncMock(return_value="result")

        assert await lifecycle.call_protected(operation) == "result"
        operation.assert_awaited_once_with("AT1")

    @pytest.mark.parametrize("expired", [False, True])
    async def test_401_forces_invalid_regardless_of_expiry(
        self, lifecycle, store, grants, valid_tokens, clock, expired
    ):
        # Arrange
        store.save_tokens(valid_tokens)
        store.save_verifier("stale-verifier")
        lifecycle.restore()
        if expired:
            clock.advance(3600)
            grants.refresh_token.return_value = TokenSet(access_token="AT2")
        operation = AsyncMock(side_effect=UnauthorizedError("revoked"))

        # Act & Assert
        with pytest.raises(UnauthorizedError):
            await lifecycle.call_protected(operation)

        assert lifecycle.state is AuthState.INVALID
        assert store.load_tokens() is None
        assert store.load_verifier() is None
        operation.assert_awaited_once()

    async def test_other_errors_leave_session_valid(
        self, lifecycle, store, valid_tokens
    ):
        store.save_tokens(valid_tokens)
        lifecycle.restore()
        operation = AsyncMock(side_effect=NetworkFailureError("flaky"))

        with pytest.raises(NetworkFailureError):
            await lifecycle.call_protected(operation)

        assert lifecycle.state is AuthState.VALID
        assert store.load_tokens() == valid_tokens


class TestListenersAndDisconnect:
    def test_disconnect_clears_everything(self, lifecycle, store, valid_tokens):
        # Arrange
        store.save_tokens(valid_tokens)
        lifecycle.restore()
        transitions = []
        lifecycle.add_listener(lambda old, new: transitions.append((old, new)))

        # Act
        lifecycle.disconnect()

        # Assert
        assert lifecycle.state is AuthState.INVALID
        assert lifecycle.tokens is None
        assert store.load_tokens() is None
        assert transitions == [(AuthState.VALID, AuthState.INVALID)]

    def test_failing_listener_does_not_block_transition(
        self, lifecycle, store, valid_tokens
    ):
        store.save_tokens(valid_tokens)
        lifecycle.restore()

        def broken(old, new):
            raise RuntimeError("listener bug")

        lifecycle.add_listener(broken)
        lifecycle.disconnect()

        assert lifecycle.state is AuthState.INVALID
