"""Loguru sink configuration shared by the CLI and long-running sessions."""
from __future__ import annotations

import sys

from loguru import logger

from learnloop.config import Settings, get_settings


def configure_logging(settings: Settings | None = None) -> None:
    """Replace the default loguru sink with the configured ones."""
    settings = settings or get_settings()

    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.log_level,
        format="<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {message}",
    )
    if settings.log_file:
        logger.add(
            settings.log_file,
            level="DEBUG",
            rotation="10 MB",
            retention=5,
            enqueue=False,
        )
