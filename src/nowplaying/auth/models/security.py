"""PKCE parameter model."""

from __future__ import annotations

from dataclasses import dataclass, field

MIN_VERIFIER_LENGTH = 43
MAX_VERIFIER_LENGTH = 128


@dataclass(frozen=True)
class PKCEParameters:
    """Verifier and challenge pair for a single authorization flow (RFC 7636).

    The verifier stays with the client; only the challenge goes to the provider.
    """

    code_verifier: str = field()
    code_challenge: str = field()
    code_challenge_method: str = field(default="S256")

    def __post_init__(self) -> None:
        if not (
            MIN_VERIFIER_LENGTH <= len(self.code_verifier) <= MAX_VERIFIER_LENGTH
        ):
            raise ValueError("code_verifier must be 43-128 characters")
        if not self.code_challenge:
            raise ValueError("code_challenge must not be empty")
        if self.code_challenge_method != "S256":
            raise ValueError("Only S256 code challenge method is supported")
