"""Run the TaskTracker API with uvicorn."""

import uvicorn
from loguru import logger

from src.core.config import get_settings
from src.core.logging import setup_logging

APP_IMPORT_PATH = "src.api.main:app"

# Route uvicorn's own loggers through Loguru
UVICORN_LOG_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "handlers": {
        "default": {"class": "src.core.logging.InterceptHandler"},
    },
    "loggers": {
        name: {"handlers": ["default"], "level": "INFO", "propagate": False}
        for name in ("uvicorn", "uvicorn.error", "uvicorn.access")
    },
}


def main() -> None:
    """Start the API server using the configured host and port."""
    settings = get_settings()
    setup_logging(settings)

    mode = "development mode with auto-reload" if settings.debug else "production mode"
    logger.info(
        "Starting Uvicorn on http://{}:{} ({})",
        settings.api_host,
        settings.api_port,
        mode,
    )
    uvicorn.run(
        APP_IMPORT_PATH,
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_config=UVICORN_LOG_CONFIG,
    )


if __name__ == "__main__":
    main()
