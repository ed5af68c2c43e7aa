"""Entry point for RSS Feed Server: python -m rssfeed_server"""

import logging

import uvicorn

from rssfeed_server.api import create_app
from rssfeed_server.config import Settings


def main() -> None:
    """Load settings from the environment and serve the API."""
    settings = Settings.from_env()

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
    )
    # Quiet noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)

    app = create_app(settings)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
