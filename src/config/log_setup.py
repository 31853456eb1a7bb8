"""Process-level logging configuration."""

from __future__ import annotations

import logging

from config.settings import Settings, get_settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(settings: Settings | None = None) -> None:
    """Install a root handler at the configured level.

    The library modules only create named loggers and never configure handlers
    themselves. Applications embedding the controller call this once at startup
    when they want the default format; otherwise their own logging setup applies.
    """

    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)
