"""PawNetwork - HTTP server entry point."""

import logging
import sys

import uvicorn

from . import config
from .main import create_app

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

_LOG = logging.getLogger("pawnet")


def main() -> None:
    """Create the application and serve it until interrupted."""
    app = create_app()
    _LOG.info("PawNetwork running on port %d", config.PORT)
    uvicorn.run(app, host=config.HOST, port=config.PORT, log_config=None)


if __name__ == "__main__":
    main()
