"""
Application setup and initialization.

Early initialization that must happen before the FastAPI application is
created: environment loading, Sentry and logging.
"""
import os

from dotenv import load_dotenv

from app.config.sentry import init_sentry
from app.utils.logger import configure_logging, get_logger


def setup_application() -> None:
    """
    Initialize application environment and configuration.

    Order matters: `.env` must be loaded before Sentry and logging read
    their settings, and Sentry goes first so import-time errors are captured.
    """
    load_dotenv()

    init_sentry()

    configure_logging(
        log_level=os.getenv("LOG_LEVEL", "info"),
        log_format=os.getenv("LOG_FORMAT", "json"),
        log_file=os.getenv(
            "LOG_FILE",
            "app.log" if os.getenv("ENVIRONMENT") == "production" else None,
        ),
        log_dir=os.getenv("LOG_DIR", "logs"),
    )

    logger = get_logger(__name__)
    logger.info("Application environment initialized", environment=os.getenv("ENVIRONMENT", "development"))
