import logging
import os
from logging.config import dictConfig
from typing import Any, Dict, Optional

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Component loggers that can be tuned on their own, keyed by the env flag that sets them.
COMPONENT_LEVEL_FLAGS = {
    "pulse_hub.store": "PULSE_STORE_LOG_LEVEL",
    "pulse_hub.ingestion": "PULSE_INGEST_LOG_LEVEL",
    "pulse_hub.telemetry": "PULSE_TELEMETRY_LOG_LEVEL",
}


def _level(flag: str, fallback: str) -> str:
    return os.getenv(flag, fallback).strip().upper() or fallback


def build_logging_config(level: Optional[str] = None, log_file: Optional[str] = None) -> Dict[str, Any]:
    """Return the ``dictConfig`` mapping for the webhook hub.

    ``PULSE_LOG_FILE`` adds a size-rotated file handler next to the console
    handler so that the service keeps a local trail of webhook activity.
    """
    root_level = (level or _level("PULSE_LOG_LEVEL", "INFO")).upper()
    log_file = log_file if log_file is not None else os.getenv("PULSE_LOG_FILE")
    handlers: Dict[str, Dict[str, Any]] = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
        },
    }
    if log_file:
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "formatter": "default",
            "filename": log_file,
            "maxBytes": 5 * 1024 * 1024,
            "backupCount": 3,
            "encoding": "utf-8",
        }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {"format": os.getenv("PULSE_LOG_FORMAT", DEFAULT_LOG_FORMAT)},
        },
        "handlers": handlers,
        "loggers": {name: {"level": _level(flag, root_level)} for name, flag in COMPONENT_LEVEL_FLAGS.items()},
        "root": {
            "handlers": list(handlers),
            "level": root_level,
        },
    }


def configure_logging(level: Optional[str] = None) -> None:
    """Apply the logging setup derived from the PULSE_LOG_* environment flags."""
    dictConfig(build_logging_config(level))

    if os.getenv("PULSE_DEBUG_HTTP", "0") == "1":
        for name in ("httpx", "uvicorn.access", "uvicorn.error"):
            logging.getLogger(name).setLevel(logging.DEBUG)
