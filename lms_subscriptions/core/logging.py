"""Logging configuration."""
from __future__ import annotations

import logging.config
import sys
from typing import Any, Dict, Optional

from lms_subscriptions.core.config import settings


def build_logging_config(level: str, json_output: bool) -> Dict[str, Any]:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
                "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
            },
            "console": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "json" if json_output else "console",
                "stream": sys.stdout,
            },
        },
        "loggers": {
            "lms_subscriptions": {
                "handlers": ["console"],
                "level": level,
                "propagate": False,
            },
            "sqlalchemy.engine": {"level": "WARNING"},
        },
        "root": {
            "handlers": ["console"],
            "level": level,
        },
    }


def configure_logging(config: Optional[Dict[str, Any]] = None) -> None:
    """Apply the logging configuration, defaulting to the one derived from settings."""

    logging.config.dictConfig(
        config or build_logging_config(settings.LOG_LEVEL.upper(), settings.LOG_JSON)
    )
