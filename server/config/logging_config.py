"""
Logging Configuration for the websearch engine
Console logging by default, rotating files and JSON records on demand
"""

import logging
import logging.config
import sys
from pathlib import Path
from typing import Optional

from .settings import WebSearchSettings, get_settings


def build_logging_config(settings: WebSearchSettings) -> dict:
    """Build the dictConfig mapping for the given settings"""
    console_formatter = "json" if settings.structured_logging else "standard"
    handlers = ["console"]

    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S"
            },
            "detailed": {
                "format": "%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(funcName)s() - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S"
            },
            "json": {
                "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
                "format": "%(asctime)s %(name)s %(levelname)s %(message)s %(pathname)s %(lineno)d"
            }
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": settings.log_level,
                "formatter": console_formatter,
                "stream": sys.stdout
            },
        },
        "loggers": {},
    }

    if settings.log_to_file:
        log_path = Path(settings.log_path)
        log_path.mkdir(parents=True, exist_ok=True)
        file_formatter = "json" if settings.structured_logging else "detailed"
        logging_config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": "INFO",
            "formatter": file_formatter,
            "filename": str(log_path / "websearch.log"),
            "maxBytes": 10485760,  # 10MB
            "backupCount": 5,
            "encoding": "utf8"
        }
        logging_config["handlers"]["error_file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": "ERROR",
            "formatter": "detailed",
            "filename": str(log_path / "errors.log"),
            "maxBytes": 10485760,  # 10MB
            "backupCount": 10,
            "encoding": "utf8"
        }
        handlers = ["console", "file", "error_file"]

    logging_config["loggers"] = {
        "websearch": {
            "level": settings.log_level,
            "handlers": handlers,
            "propagate": False
        },
        "httpx": {
            "level": "WARNING",
            "handlers": handlers,
            "propagate": False
        },
    }
    return logging_config


def setup_logging(settings: Optional[WebSearchSettings] = None) -> None:
    """
    Set up logging for the websearch engine.

    Module loggers live under the "websearch" namespace, so a single
    logger entry covers every component.
    """
    settings = settings or get_settings()
    logging.config.dictConfig(build_logging_config(settings))

    logger = logging.getLogger("websearch")
    logger.info("Logging system initialized")
    logger.info(f"Log level: {settings.log_level}")
    if settings.log_to_file:
        logger.info(f"Log directory: {settings.log_path}")
