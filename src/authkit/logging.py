"""Logging configuration based on environment."""

import logging
import sys

from authkit.config import AuthSettings

# Development format: cleaner
DEV_FORMAT = "%(levelname)s:     %(name)s - %(message)s"

# Production format: full details for debugging
PROD_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(settings: AuthSettings) -> None:
    """Configure logging for a host process (CLI, worker)."""
    log_format = DEV_FORMAT if settings.is_development else PROD_FORMAT

    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format=log_format,
        stream=sys.stdout,
    )

    # Quiet noisy loggers
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
