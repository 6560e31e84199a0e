"""Logging configuration for the GeoSpot service."""

from __future__ import annotations

import logging.config
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from geospot.core import config

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(settings: config.Settings) -> None:
    """Route the ``geospot`` loggers to stderr at the configured level.

    Existing loggers (uvicorn, fastapi) are left untouched.

    Args:
        settings: Application settings providing ``log_level``.
    """
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {"format": LOG_FORMAT},
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                },
            },
            "loggers": {
                "geospot": {
                    "handlers": ["console"],
                    "level": settings.log_level,
                    "propagate": False,
                },
            },
        }
    )
