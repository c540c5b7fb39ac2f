"""
Logging configuration for the reshard phase service

Call setup_logging() at service startup to configure logging.
"""

import logging
import logging.config
import sys
from typing import Dict, Any


def get_logging_config(log_level: str = "INFO") -> Dict[str, Any]:
    """
    Get logging configuration dictionary

    Args:
        log_level: Default log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)

    Returns:
        Logging configuration dict
    """
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(levelname)s:     %(name)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "detailed": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": log_level,
                "formatter": "detailed",
                "stream": sys.stdout,
            },
        },
        "loggers": {
            "reshard": {
                "level": log_level,
                "handlers": ["console"],
                "propagate": False,
            },
            "uvicorn": {
                "level": "INFO",
                "handlers": ["console"],
                "propagate": False,
            },
            "uvicorn.access": {
                "level": "WARNING",  # Progress POSTs arrive every few seconds
                "handlers": ["console"],
                "propagate": False,
            },
            "httpx": {
                "level": "WARNING",
                "handlers": ["console"],
                "propagate": False,
            },
            "httpcore": {
                "level": "WARNING",
                "handlers": ["console"],
                "propagate": False,
            },
        },
        "root": {
            "level": log_level,
            "handlers": ["console"],
        },
    }


def setup_logging(log_level: str = "INFO"):
    """
    Configure logging for the service

    Args:
        log_level: Log level to use (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    config = get_logging_config(log_level)
    logging.config.dictConfig(config)

    logger = logging.getLogger(__name__)
    logger.info(f"Logging configured with level: {log_level}")
