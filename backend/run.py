"""Entry point: load .env, validate settings and serve the dashboard."""

import logging
import sys

from dotenv import load_dotenv

from app import create_app
from services.config import load_settings
from services.errors import ConfigurationError

logger = logging.getLogger(__name__)


def main():
    load_dotenv()
    try:
        settings = load_settings()
    except ConfigurationError as e:
        logging.basicConfig(level=logging.ERROR)
        logger.error(f"Invalid configuration: {e}")
        for name in e.missing:
            logger.error(f"Missing required environment variable: {name}")
        sys.exit(1)

    app = create_app(settings)
    logger.info(f"Team health dashboard on port {settings.port} (board {settings.board_id})")
    app.run(host="0.0.0.0", port=settings.port, debug=settings.debug)


if __name__ == "__main__":
    main()
