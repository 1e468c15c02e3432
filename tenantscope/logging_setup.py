"""Console logging for the tenantscope CLI."""

from __future__ import annotations

import logging

from rich.logging import RichHandler

from tenantscope.config.settings import settings


def configure_logging(level: str | int | None = None) -> None:
    """Route ``tenantscope`` loggers through a rich handler.

    Args:
        level: Log level name or number; ``settings.TENANT_LOG_LEVEL`` by default.
    """
    logger = logging.getLogger("tenantscope")
    logger.setLevel(level or settings.TENANT_LOG_LEVEL)
    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        logger.addHandler(RichHandler(show_path=False, markup=False))
