"""Token models for the authorization-code and refresh grants.

TokenSet is what the client keeps; TokenResponse is what the token endpoint
(and the relay) send back on the wire.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel

DEFAULT_EXPIRES_IN = 3600


@dataclass(frozen=True)
class TokenSet:
    """Access token, optional refresh token and expiry.

    Immutable: a refresh produces a new TokenSet rather than mutating the held one.
    """

    access_token: str
    expires_in: int = DEFAULT_EXPIRES_IN
    refresh_token: str | None = None
    issued_at: float = field(default_factory=time.time)  # Unix timestamp

    @property
    def expires_at(self) -> float:
        return self.issued_at + self.expires_in

    def is_expired(self, now: float | None = None) -> bool:
        """True once `now` has reached the expiry instant."""
        if now is None:
            now = time.time()
        return now >= self.expires_at

    def can_refresh(self) -> bool:
        return bool(self.refresh_token)

    def to_wire(self) -> dict[str, Any]:
        """Shape returned by the relay's token endpoints."""
        return {
            "access_token": self.access_token,
            "expires_in": self.expires_in,
            "refresh_token": self.refresh_token,
        }

    def to_record(self) -> dict[str, Any]:
        """Shape persisted in the durable token store."""
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_in": self.expires_in,
            "expires_at": self.expires_at,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> TokenSet:
        expires_in = int(record.get("expires_in", DEFAULT_EXPIRES_IN))
        return cls(
            access_token=record["access_token"],
            expires_in=expires_in,
            refresh_token=record.get("refresh_token"),
            issued_at=float(record["expires_at"]) - expires_in,
        )


@dataclass(frozen=True)
class TokenRequest:
    """Authorization code exchange parameters (RFC 6749 Section 4.1.3).

    Includes the PKCE code_verifier (RFC 7636).
    """

    token_endpoint: str
    code: str
    redirect_uri: str
    client_id: str
    code_verifier: str
    grant_type: str = "authorization_code"

    def to_form_data(self) -> dict[str, str]:
        """Convert to form data for an application/x-www-form-urlencoded body."""
        return {
            "grant_type": self.grant_type,
            "code": self.code,
            "redirect_uri": self.redirect_uri,
            "client_id": self.client_id,
            "code_verifier": self.code_verifier,
        }


@dataclass(frozen=True)
class RefreshTokenRequest:
    """Refresh token request parameters (RFC 6749 Section 6)."""

    token_endpoint: str
    refresh_token: str
    client_id: str
    grant_type: str = "refresh_token"

    def to_form_data(self) -> dict[str, str]:
        return {
            "grant_type": self.grant_type,
            "refresh_token": self.refresh_token,
            "client_id": self.client_id,
        }


class TokenResponse(BaseModel):
    """Token endpoint response (RFC 6749 Section 5).

    Covers both success (5.1) and error (5.2) bodies. The relay answers with the
    same field names, so the client parses relay responses with it too.
    """

    access_token: str | None = None
    token_type: str = "Bearer"
    expires_in: int | None = None
    refresh_token: str | None = None
    scope: str | None = None

    error: str | None = None
    error_description: str | None = None

    def is_success(self) -> bool:
        return self.error is None and self.access_token is not None

    def to_token_set(
        self,
        previous_refresh_token: str | None = None,
        now: float | None = None,
    ) -> TokenSet:
        """Convert a successful response into a TokenSet.

        Args:
            previous_refresh_token: Carried forward when the response omits one
            now: Issue instant, defaults to the current time

        Raises:
            ValueError: If the response is not successful
        """
        if not self.is_success():
            raise ValueError("Cannot convert error response to TokenSet")

        return TokenSet(
            access_token=self.access_token,
            expires_in=(
                self.expires_in if self.expires_in is not None else DEFAULT_EXPIRES_IN
            ),
            refresh_token=self.refresh_token or previous_refresh_token,
            issued_at=time.time() if now is None else now,
        )
