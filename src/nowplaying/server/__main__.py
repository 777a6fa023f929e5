"""Run the PKCE relay: `python -m nowplaying.server`.

Reads SPOTIFY_CLIENT_ID, SPOTIFY_CLIENT_SECRET, SPOTIFY_REDIRECT_URI,
FRONTEND_URL and PORT from the environment (or a `.env` file).
"""

import asyncio
import logging
import sys

from dotenv import load_dotenv

from nowplaying.auth.models.errors import ConfigurationError
from nowplaying.server.config import RelayConfig
from nowplaying.server.relay import RelayServer

logger = logging.getLogger(__name__)


def main() -> int:
    load_dotenv()
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    try:
        config = RelayConfig.from_env()
    except ConfigurationError as e:
        logger.error(f"Cannot start relay: {e}")
        return 1

    logger.info(f"Environment loaded: {config.describe()}")
    try:
        asyncio.run(RelayServer(config).serve())
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
