"""Periodic now-playing fetch driven by the token lifecycle."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from nowplaying.auth.models.errors import (
    NetworkFailureError,
    ProviderResponseError,
    UnauthorizedError,
)
from nowplaying.client.lifecycle import AuthState, TokenLifecycleManager
from nowplaying.shared.track import Track

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 30.0

TrackFetcher = Callable[[str], Awaitable[Track | None]]
TrackListener = Callable[[Track | None], None]


class NowPlayingPoller:
    """Fetches the current track on a fixed interval while the session is valid.

    Ticks run one after another inside a single background task, so a fetch
    never starts while the previous tick's refresh is still outstanding. The
    task ends as soon as the lifecycle becomes INVALID.
    """

    def __init__(
        self,
        lifecycle: TokenLifecycleManager,
        fetch_track: TrackFetcher,
        on_track: TrackListener | None = None,
        interval: float = DEFAULT_POLL_INTERVAL,
    ):
        self._lifecycle = lifecycle
        self._fetch_track = fetch_track
        self._on_track = on_track
        self.interval = interval
        self.current_track: Track | None = None
        self._poll_task: asyncio.Task[None] | None = None

    # ================================
    # Lifecycle
    # ================================

    @property
    def running(self) -> bool:
        """True while the poll task is alive."""
        return self._poll_task is not None and not self._poll_task.done()

    async def start(self) -> None:
        """Start polling. Ignored if already running or not authenticated."""
        if self.running:
            return
        if not self._lifecycle.is_authenticated:
            logger.info("Not authenticated, poll interval not started")
            return

        logger.info("Starting track fetch interval")
        self._lifecycle.add_listener(self._on_auth_state_change)
        self._poll_task = asyncio.create_task(self._poll_loop())
        self._poll_task.add_done_callback(self._on_poll_loop_done)

    async def stop(self) -> None:
        """Cancel the poll task. Safe to call multiple times."""
        task = self._poll_task
        if task is None:
            return

        logger.info("Clearing track fetch interval")
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self._poll_task = None
        self._lifecycle.remove_listener(self._on_auth_state_change)

    async def wait(self) -> None:
        """Wait until the poll task ends on its own or is stopped."""
        task = self._poll_task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    # ================================
    # Polling
    # ================================

    async def tick(self) -> bool:
        """Run one fetch. Returns False when polling must stop."""
        try:
            track = await self._lifecycle.call_protected(self._fetch_track)
        except UnauthorizedError as e:
            logger.info(f"Stopping poller, session no longer authorized: {e}")
            self._publish(None)
            return False
        except (NetworkFailureError, ProviderResponseError) as e:
            # Transient, retried on the next tick
            logger.warning(f"Track fetch failed: {e}")
            return True

        self._publish(track)
        return True

    async def _poll_loop(self) -> None:
        while self._lifecycle.is_authenticated:
            if not await self.tick():
                break
            await asyncio.sleep(self.interval)

    def _publish(self, track: Track | None) -> None:
        self.current_track = track
        if self._on_track is not None:
            self._on_track(track)

    def _on_auth_state_change(self, old: AuthState, new: AuthState) -> None:
        if new is not AuthState.INVALID:
            return
        task = self._poll_task
        # From inside a tick the loop exits by itself once the tick returns
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            self._publish(None)

    def _on_poll_loop_done(self, task: asyncio.Task[None]) -> None:
        if self._poll_task is task:
            self._poll_task = None
        self._lifecycle.remove_listener(self._on_auth_state_change)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Poll loop crashed: {task.exception()}")
