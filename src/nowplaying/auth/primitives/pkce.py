"""PKCE (Proof Key for Code Exchange) primitives.

Implements RFC 7636 verifier generation and S256 challenge derivation. The
verifier is created by the client and never leaves it except inside the
exchange request; the challenge is what the provider sees during
authorization.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
import string

from nowplaying.auth.models.errors import OAuth2Error
from nowplaying.auth.models.security import (
    MAX_VERIFIER_LENGTH,
    MIN_VERIFIER_LENGTH,
    PKCEParameters,
)

# RFC 7636 Section 4.1 unreserved characters
VERIFIER_ALPHABET = string.ascii_letters + string.digits + "-._~"


def generate_verifier(length: int = MAX_VERIFIER_LENGTH) -> str:
    """Generate a cryptographically secure code verifier.

    Args:
        length: Requested length, clamped to the 43-128 range

    Returns:
        A random string of unreserved characters
    """
    length = max(MIN_VERIFIER_LENGTH, min(length, MAX_VERIFIER_LENGTH))
    return "".join(secrets.choice(VERIFIER_ALPHABET) for _ in range(length))


def derive_challenge(verifier: str) -> str:
    """Derive the S256 code challenge: BASE64URL(SHA256(ASCII(verifier))).

    Pure and deterministic. The output never contains `+`, `/` or `=`.
    """
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return (
        base64.b64encode(digest)
        .decode("ascii")
        .replace("+", "-")
        .replace("/", "_")
        .rstrip("=")
    )


class PKCEManager:
    """Generates the verifier/challenge pair for one authorization flow."""

    def __init__(self, verifier_length: int = MAX_VERIFIER_LENGTH):
        self.verifier_length = verifier_length

    def generate_parameters(self) -> PKCEParameters:
        """Generate new PKCE parameters.

        Raises:
            OAuth2Error: If parameter generation fails
        """
        try:
            code_verifier = generate_verifier(self.verifier_length)
            return PKCEParameters(
                code_verifier=code_verifier,
                code_challenge=derive_challenge(code_verifier),
                code_challenge_method="S256",
            )
        except ValueError as e:
            raise OAuth2Error(f"Failed to generate PKCE parameters: {e}") from e
