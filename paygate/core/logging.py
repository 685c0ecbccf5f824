"""Centralized logging helpers for the payment integration layer."""
from __future__ import annotations

import logging
from typing import Optional

from pythonjsonlogger import jsonlogger

# Third-party loggers that would otherwise echo full provider URLs per request.
_QUIET_LOGGERS = ("httpx", "httpcore", "stripe")


def setup_logging(level: str = "INFO") -> None:
    """Configure root logging with a JSON formatter.

    Every record is rendered as one JSON object; values passed through
    ``extra={...}`` become top-level keys, which is what the payment and
    webhook services rely on for correlation (``payment_id``, ``event_id``,
    ``processor_type``).
    """

    root_logger = logging.getLogger()
    # Remove existing handlers to avoid duplicate logs when reloading.
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
    root_logger.setLevel(level.upper())

    handler = logging.StreamHandler()
    formatter = jsonlogger.JsonFormatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s",
        rename_fields={"levelname": "level", "asctime": "ts"},
    )
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    logger = logging.getLogger(name)
    if level is not None:
        logger.setLevel(level.upper())
    return logger


__all__ = ["setup_logging", "get_logger"]
