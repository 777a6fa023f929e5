"""Access-token lifecycle state machine.

States:
    UNAUTHENTICATED  no token record and no pending code
    VALID            a token is held and has not reached its expiry instant
    EXPIRED          expiry reached, a single refresh attempt is in progress
    INVALID          torn down: tokens and verifier cleared, re-authorize

The manager is the single source of truth for the current token. Callers ask
for it fresh on every protected call instead of capturing it.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Protocol, TypeVar

from nowplaying.auth.models.errors import (
    MissingParameterError,
    OAuth2Error,
    UnauthorizedError,
)
from nowplaying.auth.models.tokens import TokenSet
from nowplaying.client.store import TokenStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AuthState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    VALID = "valid"
    EXPIRED = "expired"
    INVALID = "invalid"


StateListener = Callable[[AuthState, AuthState], None]


class TokenGrants(Protocol):
    async def exchange_token(self, code: str, code_verifier: str) -> TokenSet: ...

    async def refresh_token(self, refresh_token: str) -> TokenSet: ...


class TokenLifecycleManager:
    def __init__(
        self,
        store: TokenStore,
        grants: TokenGrants,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._grants = grants
        self._clock = clock
        self._state = AuthState.UNAUTHENTICATED
        self._tokens: TokenSet | None = None
        self._refresh_lock = asyncio.Lock()
        self._listeners: list[StateListener] = []

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def is_authenticated(self) -> bool:
        return self._state in (AuthState.VALID, AuthState.EXPIRED)

    @property
    def tokens(self) -> TokenSet | None:
        return self._tokens

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: StateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ================================
    # Entry points
    # ================================

    def restore(self) -> AuthState:
        """Pick up a token record left by a previous run."""
        tokens = self._store.load_tokens()
        if tokens is None:
            self._tokens = None
            self._set_state(AuthState.UNAUTHENTICATED)
            return self._state

        self._tokens = tokens
        logger.info("Found stored token")
        if tokens.is_expired(self._clock()):
            self._set_state(AuthState.EXPIRED)
        else:
            self._set_state(AuthState.VALID)
        return self._state

    async def complete_login(self, code: str) -> TokenSet:
        """Exchange a forwarded code with the verifier kept in ephemeral storage.

        The verifier is removed whatever the outcome, so a code can never be
        replayed from this client.

        Raises:
            MissingParameterError: If no verifier is pending or code is empty
            OAuth2Error: If the exchange failed; the manager is then INVALID
        """
        verifier = self._store.load_verifier()
        self._store.clear_verifier()

        if not verifier or not code:
            logger.error("Code verifier missing from session storage")
            self.invalidate("missing code verifier")
            raise MissingParameterError("No code verifier pending for this session")

        try:
            tokens = await self._grants.exchange_token(code, verifier)
        except OAuth2Error as e:
            logger.error(f"Error during token exchange: {e}")
            self.invalidate("token exchange failed")
            raise

        accepted = dataclasses.replace(tokens, issued_at=self._clock())
        self._accept(accepted)
        logger.info("Token received successfully")
        return accepted

    async def get_valid_token(self) -> str:
        """Return a usable access token, refreshing once if it has expired.

        Raises:
            UnauthorizedError: If there is no session or the refresh failed
        """
        if not self.is_authenticated:
            raise UnauthorizedError(f"No usable token (state: {self._state.value})")

        # Serialized so that concurrent callers share one refresh
        async with self._refresh_lock:
            tokens = self._tokens
            if tokens is None or not self.is_authenticated:
                raise UnauthorizedError("Session was invalidated")

            if not tokens.is_expired(self._clock()):
                return tokens.access_token

            self._set_state(AuthState.EXPIRED)
            if not tokens.can_refresh():
                self.invalidate("token expired and cannot be refreshed")
                raise UnauthorizedError("Token expired and cannot be refreshed")

            try:
                refreshed = await self._grants.refresh_token(tokens.refresh_token)
            except OAuth2Error as e:
                logger.error(f"Error refreshing token: {e}")
                self.invalidate("token refresh failed")
                raise UnauthorizedError(f"Token refresh failed: {e}") from e

            self._accept(
                dataclasses.replace(
                    refreshed,
                    refresh_token=refreshed.refresh_token or tokens.refresh_token,
                    issued_at=self._clock(),
                )
            )
            logger.info("Successfully refreshed access token")
            return refreshed.access_token

    async def call_protected(self, operation: Callable[[str], Awaitable[T]]) -> T:
        """Validate-or-refresh, then run `operation` with the token.

        A 401 from the operation tears the session down regardless of the
        locally computed expiry. There is no retry.
        """
        access_token = await self.get_valid_token()
        try:
            return await operation(access_token)
        except UnauthorizedError:
            logger.info("Token validation failed (401), clearing auth state")
            self.invalidate("protected resource returned 401")
            raise

    def invalidate(self, reason: str) -> None:
        """Full teardown: clear durable tokens and the ephemeral verifier."""
        logger.info(f"Invalidating session: {reason}")
        self._tokens = None
        self._store.clear()
        self._set_state(AuthState.INVALID)

    def disconnect(self) -> None:
        self.invalidate("disconnected by user")

    # ================================
    # Internals
    # ================================

    def _accept(self, tokens: TokenSet) -> None:
        self._tokens = tokens
        self._store.save_tokens(tokens)
        self._set_state(AuthState.VALID)

    def _set_state(self, new_state: AuthState) -> None:
        old_state = self._state
        self._state = new_state
        if old_state == new_state:
            return

        logger.debug(f"Auth state {old_state.value} -> {new_state.value}")
        for listener in list(self._listeners):
            try:
                listener(old_state, new_state)
            except Exception as e:
                logger.error(f"Auth state listener failed: {e}")
