"""PKCE authorization relay HTTP server.

Starlette application exposing:
- GET  /login           redirect to the provider with the client's challenge
- GET  /callback        forward the provider's code or error to the client
- POST /exchange-token  exchange {code, code_verifier} for tokens
- POST /refresh-token   exchange {refresh_token} for a fresh access token
- GET  /current-track   proxy the currently-playing resource

Each route has a single top-level handler that always produces a response.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

import uvicorn
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response
from starlette.routing import Route

from nowplaying.auth.models.errors import (
    ExchangeFailedError,
    MissingParameterError,
    NetworkFailureError,
    ResourceRequestError,
    UnauthorizedError,
)
from nowplaying.auth.models.flow import build_authorization_url
from nowplaying.auth.services.tokens import TokenExchanger
from nowplaying.server.callback import CallbackRelay
from nowplaying.server.config import RelayConfig
from nowplaying.server.player import PlayerClient

logger = logging.getLogger(__name__)

Handler = Callable[[Request], Awaitable[Response]]


class RelayServer:
    """HTTP relay between the client application and the provider.

    Holds the confidential client credentials; the client application only
    ever sees authorization codes and the tokens issued for them.
    """

    def __init__(
        self,
        config: RelayConfig,
        exchanger: TokenExchanger | None = None,
        player: PlayerClient | None = None,
    ) -> None:
        self.config = config
        self._exchanger = exchanger or TokenExchanger(
            client_id=config.client_id,
            redirect_uri=config.redirect_uri,
            client_secret=config.client_secret,
            use_client_secret=config.use_client_secret,
        )
        self._player = player or PlayerClient()
        self._callbacks = CallbackRelay(config.frontend_url)

        self.app = Starlette(
            routes=[
                Route("/login", self._guarded(self._handle_login), methods=["GET"]),
                Route(
                    "/callback", self._guarded(self._handle_callback), methods=["GET"]
                ),
                Route(
                    "/exchange-token",
                    self._guarded(self._handle_exchange_token),
                    methods=["POST"],
                ),
                Route(
                    "/refresh-token",
                    self._guarded(self._handle_refresh_token),
                    methods=["POST"],
                ),
                Route(
                    "/current-track",
                    self._guarded(self._handle_current_track),
                    methods=["GET"],
                ),
            ],
            middleware=[
                Middleware(
                    CORSMiddleware,
                    allow_origins=[config.frontend_url],
                    allow_methods=["GET", "POST"],
                    allow_headers=["Authorization", "Content-Type"],
                )
            ],
            lifespan=self._lifespan,
        )

    async def serve(self) -> None:
        """Run the relay under uvicorn until interrupted."""
        server = uvicorn.Server(
            uvicorn.Config(
                app=self.app,
                host=self.config.host,
                port=self.config.port,
                log_level="info",
            )
        )
        logger.info(
            f"Relay running on http://{self.config.host}:{self.config.port}, "
            f"client origin {self.config.frontend_url}"
        )
        await server.serve()

    @contextlib.asynccontextmanager
    async def _lifespan(self, app: Starlette) -> AsyncIterator[None]:
        try:
            yield
        finally:
            await self.close()

    async def close(self) -> None:
        await self._exchanger.close()
        await self._player.close()

    def _guarded(self, handler: Handler) -> Handler:
        """Wrap a route so unexpected failures still produce a 500 response."""

        async def endpoint(request: Request) -> Response:
            try:
                return await handler(request)
            except Exception as e:
                logger.exception(f"Unhandled error on {request.url.path}: {e}")
                return JSONResponse(
                    {"error": "Internal server error", "details": str(e)},
                    status_code=500,
                )

        return endpoint

    # ================================
    # Authorization
    # ================================

    async def _handle_login(self, request: Request) -> Response:
        """Redirect the user agent to the provider's authorization page."""
        code_challenge = request.query_params.get("code_challenge")
        code_challenge_method = request.query_params.get("code_challenge_method")

        if not code_challenge or not code_challenge_method:
            return JSONResponse(
                {
                    "error": "Missing PKCE parameters "
                    "(code_challenge or code_challenge_method)"
                },
                status_code=400,
            )
        if code_challenge_method != "S256":
            return JSONResponse(
                {"error": f"Unsupported code_challenge_method: {code_challenge_method}"},
                status_code=400,
            )

        auth_url = build_authorization_url(
            challenge=code_challenge,
            client_id=self.config.client_id,
            redirect_uri=self.config.redirect_uri,
            scope=self.config.scope,
        )
        logger.info("Redirecting to provider authorization URL")
        logger.debug(f"Authorization URL: {auth_url}")
        return RedirectResponse(auth_url, status_code=302)

    async def _handle_callback(self, request: Request) -> Response:
        """Forward the provider's code or error to the client application."""
        outcome = self._callbacks.handle(
            code=request.query_params.get("code"),
            error=request.query_params.get("error"),
        )
        return RedirectResponse(outcome.redirect_url, status_code=302)

    # ================================
    # Token exchange
    # ================================

    async def _handle_exchange_token(self, request: Request) -> Response:
        body = await self._json_body(request)
        code = body.get("code") if body else None
        code_verifier = body.get("code_verifier") if body else None

        if not code or not code_verifier:
            return JSONResponse(
                {"error": "Missing code or code_verifier in request body"},
                status_code=400,
            )

        logger.info("Received request to exchange code for token")
        return await self._token_response(
            lambda: self._exchanger.exchange(code, code_verifier),
            "Failed to exchange code for token",
        )

    async def _handle_refresh_token(self, request: Request) -> Response:
        body = await self._json_body(request)
        refresh_token = body.get("refresh_token") if body else None

        if not refresh_token:
            return JSONResponse(
                {"error": "Missing refresh_token in request body"}, status_code=400
            )

        logger.info("Received request to refresh access token")
        return await self._token_response(
            lambda: self._exchanger.refresh(refresh_token),
            "Failed to refresh access token",
        )

    async def _token_response(
        self, operation: Callable[[], Awaitable[Any]], failure_message: str
    ) -> Response:
        try:
            token_set = await operation()
        except MissingParameterError as e:
            return JSONResponse({"error": str(e)}, status_code=400)
        except ExchangeFailedError as e:
            logger.error(f"{failure_message} [{e.kind.value}]: {e.body}")
            return JSONResponse(
                {"error": failure_message, "details": e.body},
                status_code=self._failure_status(e.status_code),
            )
        except NetworkFailureError as e:
            logger.error(f"{failure_message} [{e.kind.value}]: {e}")
            return JSONResponse(
                {"error": failure_message, "details": str(e)}, status_code=500
            )

        return JSONResponse(token_set.to_wire())

    # ================================
    # Protected resource
    # ================================

    async def _handle_current_track(self, request: Request) -> Response:
        token = self._bearer_token(request)
        if not token:
            return JSONResponse({"error": "No token provided"}, status_code=401)

        logger.debug("Received request for /current-track")
        error_message = "Spotify API error during track fetch"
        try:
            track = await self._player.current_track(token)
        except UnauthorizedError as e:
            return JSONResponse(
                {"error": error_message, "details": str(e)}, status_code=401
            )
        except ResourceRequestError as e:
            return JSONResponse(
                {"error": error_message, "details": e.body},
                status_code=e.status_code or 500,
            )
        except NetworkFailureError as e:
            return JSONResponse(
                {"error": error_message, "details": str(e)}, status_code=500
            )

        if track is None:
            return Response(status_code=204)

        logger.debug("Successfully fetched track data")
        return JSONResponse(track.to_wire())

    # ================================
    # Helpers
    # ================================

    @staticmethod
    async def _json_body(request: Request) -> dict[str, Any] | None:
        try:
            body = await request.json()
        except ValueError:
            return None
        return body if isinstance(body, dict) else None

    @staticmethod
    def _bearer_token(request: Request) -> str | None:
        authorization = request.headers.get("Authorization") or ""
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            return None
        return token.strip()

    @staticmethod
    def _failure_status(provider_status: int | None) -> int:
        # A provider success with an unusable body is still a failed exchange.
        if provider_status is None:
            return 500
        if provider_status < 400:
            return 502
        return provider_status
