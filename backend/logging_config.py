# backend/logging_config.py
import logging
import logging.config
from typing import Any, Dict

FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def build_logging_config(level: str = "INFO") -> Dict[str, Any]:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {"format": FORMAT},
            "access": {"format": "%(asctime)s | %(levelname)s | uvicorn.access | %(message)s"},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "standard",
                "level": level,
            },
            "access_console": {
                "class": "logging.StreamHandler",
                "formatter": "access",
                "level": level,
            },
        },
        "loggers": {
            "uvicorn": {"handlers": ["console"], "level": level, "propagate": False},
            "uvicorn.error": {"handlers": ["console"], "level": level, "propagate": False},
            "uvicorn.access": {"handlers": ["access_console"], "level": level, "propagate": False},
            # chatty at DEBUG: one line per websocket frame
            "websockets": {"handlers": ["console"], "level": "WARNING", "propagate": False},
        },
        "root": {"handlers": ["console"], "level": level},
    }


def setup_logging(level: str = "INFO") -> None:
    logging.config.dictConfig(build_logging_config(level))
    logging.getLogger(__name__).info("Logging initialized at %s", level)
