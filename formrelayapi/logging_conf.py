import logging
from logging.config import dictConfig

from formrelayapi.config import config, DevConfig


def configure_logging() -> None:
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "console": {
                    "class": "logging.Formatter",
                    "datefmt": "%Y-%m-%dT%H:%M:%S",
                    "format": "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d - %(message)s",
                },
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "level": "DEBUG",
                    "formatter": "console",
                    "stream": "ext://sys.stdout",
                },
            },
            "loggers": {
                "uvicorn": {"handlers": ["default"], "level": "INFO"},
                "formrelayapi": {
                    "handlers": ["default"],
                    "level": "DEBUG" if isinstance(config, DevConfig) else config.LOG_LEVEL,
                    "propagate": False,
                },
                "databases": {"handlers": ["default"], "level": "WARNING"},
                "httpx": {"handlers": ["default"], "level": "WARNING"},
            },
        }
    )
    logging.getLogger(__name__).debug("Logging configured")
