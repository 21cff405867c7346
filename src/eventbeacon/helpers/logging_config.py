"""
Logging helpers for the EventBeacon pipeline.

The package logger is silent by default (NullHandler). Applications that want
to see pipeline diagnostics call :func:`configure_logging`.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

LOGGER_NAME = "eventbeacon"

_DEFAULT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
_SENSITIVE_KEYS = frozenset(
    {
        "api_key",
        "apikey",
        "x-api-key",
        "authorization",
        "token",
        "access_token",
        "password",
        "secret",
    }
)
_REDACTED = "***REDACTED***"

logging.getLogger(LOGGER_NAME).addHandler(logging.NullHandler())

_configured_handler: logging.Handler | None = None


def get_logger(name: str | None = None) -> logging.Logger:
    """
    Return the package logger, or a child logger when ``name`` is given.

    ``name`` may be relative (``"dispatcher"``) or already qualified
    (``"eventbeacon.dispatcher"``).
    """
    if name:
        if name == LOGGER_NAME or name.startswith(f"{LOGGER_NAME}."):
            return logging.getLogger(name)
        return logging.getLogger(f"{LOGGER_NAME}.{name}")
    return logging.getLogger(LOGGER_NAME)


def configure_logging(
    level: int | str = logging.INFO,
    *,
    handler: logging.Handler | None = None,
    fmt: str | None = None,
) -> logging.Logger:
    """
    Attach a handler to the package logger.

    Calling this more than once replaces the previously configured handler
    instead of stacking a second one.

    Args:
        level: Logging level for the package logger
        handler: Optional handler (defaults to a stderr StreamHandler)
        fmt: Optional format string for the handler

    Returns:
        The configured package logger
    """
    global _configured_handler

    logger = get_logger()
    if _configured_handler is not None:
        logger.removeHandler(_configured_handler)

    new_handler = handler or logging.StreamHandler()
    new_handler.setFormatter(logging.Formatter(fmt or _DEFAULT_FORMAT))
    logger.addHandler(new_handler)
    logger.setLevel(level)
    _configured_handler = new_handler
    return logger


def redact_sensitive_data(data: Any) -> Any:
    """Return a copy of ``data`` with credential-like values masked."""
    if isinstance(data, Mapping):
        redacted: dict[str, Any] = {}
        for key, value in data.items():
            if str(key).lower() in _SENSITIVE_KEYS:
                redacted[key] = _REDACTED
            else:
                redacted[key] = redact_sensitive_data(value)
        return redacted
    if isinstance(data, list | tuple):
        return [redact_sensitive_data(item) for item in data]
    return data
