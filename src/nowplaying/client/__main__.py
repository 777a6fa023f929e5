"""Console client: `python -m nowplaying.client [--logout]`.

Prints the login URL when no token is stored, asks for the URL the browser
landed on after the relay redirect, then logs the current track every poll.
"""

import argparse
import asyncio
import logging
import sys
from typing import Protocol

from dotenv import load_dotenv

from nowplaying.auth.models.errors import ConfigurationError, OAuth2Error
from nowplaying.client.session import ClientConfig, NowPlayingSession
from nowplaying.shared.track import Track

logger = logging.getLogger(__name__)


class AuthorizationHandler(Protocol):
    """Takes the user agent to the login URL and returns the landing URL."""

    async def handle_authorization(self, login_url: str) -> str: ...


class ConsoleAuthorizationHandler:
    """Asks the user to open the URL and paste back where they landed."""

    async def handle_authorization(self, login_url: str) -> str:
        print(f"Open this URL to log in with Spotify:\n\n  {login_url}\n")
        return await asyncio.to_thread(
            input, "Paste the URL you were redirected to: "
        )


def render_track(track: Track | None) -> None:
    if track is None:
        logger.info("Nothing playing")
        return
    status = "Playing" if track.is_playing else "Paused"
    logger.info(f"{status}: {track.name} by {track.artist} ({track.album})")


async def run(
    config: ClientConfig,
    handler: AuthorizationHandler,
    logout: bool = False,
) -> int:
    session = NowPlayingSession(config, on_track=render_track)
    try:
        if logout:
            await session.logout()
            logger.info("Logged out")
            return 0

        await session.resume()
        if not session.lifecycle.is_authenticated:
            landing_url = await handler.handle_authorization(session.login_url())
            await session.resume(landing_url.strip())

        await session.poller.wait()
        logger.info("Session ended, log in again to continue")
        return 1
    except OAuth2Error as e:
        logger.error(f"Login failed: {e}")
        return 1
    finally:
        await session.close()


def main() -> int:
    parser = argparse.ArgumentParser(description="Show the currently playing track")
    parser.add_argument(
        "--logout", action="store_true", help="forget the stored tokens and exit"
    )
    args = parser.parse_args()

    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")

    try:
        config = ClientConfig.from_env()
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    try:
        return asyncio.run(run(config, ConsoleAuthorizationHandler(), args.logout))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
