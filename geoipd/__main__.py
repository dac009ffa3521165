import logging
import sys

import uvicorn

from .config import load_settings
from .errors import ConfigError
from .logging_config import setup_logging
from .main import create_app


def main() -> int:
    setup_logging()
    try:
        settings = load_settings()
    except ConfigError as e:
        logging.getLogger("geoipd").critical("invalid configuration: %s", e)
        return 2

    app = create_app(settings)
    # log_config=None keeps our dictConfig instead of uvicorn's defaults
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None,
                timeout_graceful_shutdown=int(settings.shutdown_timeout))
    return 0


if __name__ == "__main__":
    sys.exit(main())
