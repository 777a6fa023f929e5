"""Client-side start of the authorization flow."""

from __future__ import annotations

import logging

from nowplaying.auth.primitives.pkce import PKCEManager
from nowplaying.client.relay_client import RelayClient
from nowplaying.client.store import TokenStore

logger = logging.getLogger(__name__)


class AuthorizationInitiator:
    """Generates the PKCE pair and returns where to send the user agent.

    The verifier is persisted in the ephemeral store before the URL is handed
    out: it is needed again once the user agent lands back with a code.
    """

    def __init__(
        self,
        store: TokenStore,
        relay: RelayClient,
        pkce_manager: PKCEManager | None = None,
    ):
        self._store = store
        self._relay = relay
        self._pkce_manager = pkce_manager or PKCEManager()

    def start(self) -> str:
        pkce_params = self._pkce_manager.generate_parameters()
        self._store.save_verifier(pkce_params.code_verifier)
        logger.info("Starting authorization flow")
        return self._relay.login_url(pkce_params.code_challenge)
