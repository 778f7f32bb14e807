"""Main entry point - runs the API server."""

import logging

import uvicorn

from havenvault.api.app import create_app
from havenvault.config import get_settings

logger = logging.getLogger(__name__)


def configure_logging(debug: bool) -> None:
    log_level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def main():
    """Main entry point."""
    settings = get_settings()
    configure_logging(settings.debug)

    logger.info("Starting Haven Vault...")
    logger.info(f"Environment: {settings.environment}")

    missing = settings.missing_pipeline_config()
    if missing:
        logger.warning(f"Missing configuration: {', '.join(missing)}")

    uvicorn.run(
        create_app(),
        host=settings.api_host,
        port=settings.api_port,
        log_level="debug" if settings.debug else "info",
    )


if __name__ == "__main__":
    main()
