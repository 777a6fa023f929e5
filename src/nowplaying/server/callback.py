"""Provider callback relay.

Receives the provider's redirect and forwards the code (or the error) to the
client application. It never exchanges the code: the PKCE verifier needed for
that only exists on the client.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from urllib.parse import urlencode

logger = logging.getLogger(__name__)

MISSING_CODE_ERROR = "missing_code"


class CallbackState(str, Enum):
    """Every callback starts AWAITING_CALLBACK and ends in exactly one outcome."""

    AWAITING_CALLBACK = "awaiting_callback"
    CODE_RECEIVED = "code_received"
    ERROR_RECEIVED = "error_received"


@dataclass(frozen=True)
class CallbackOutcome:
    state: CallbackState
    redirect_url: str
    code: str | None = None
    error: str | None = None


class CallbackRelay:
    """Turns provider callbacks into redirects to the client origin."""

    def __init__(self, client_origin: str):
        self.client_origin = client_origin

    def handle(self, code: str | None, error: str | None) -> CallbackOutcome:
        """Resolve one provider callback.

        An `error` wins over a `code`; a callback with neither is treated as an
        error so the failure is never dropped.
        """
        if error:
            logger.error(f"Error received from provider callback: {error}")
            return self._outcome(CallbackState.ERROR_RECEIVED, error=error)

        if not code:
            logger.error("No code received from provider callback")
            return self._outcome(
                CallbackState.ERROR_RECEIVED, error=MISSING_CODE_ERROR
            )

        logger.info("Received code from provider, redirecting to client")
        return self._outcome(CallbackState.CODE_RECEIVED, code=code)

    def _outcome(
        self,
        state: CallbackState,
        code: str | None = None,
        error: str | None = None,
    ) -> CallbackOutcome:
        params = {"code": code} if code else {"error": error}
        return CallbackOutcome(
            state=state,
            redirect_url=f"{self.client_origin}?{urlencode(params)}",
            code=code,
            error=error,
        )
