"""Logging utilities for fedsignin.

Modules log through ``logging.getLogger("fedsignin.<area>")``; the package
logger configured here owns the handler, so its level (from
``FEDSIGNIN_LOG__LEVEL``) applies to every child logger.
"""

from __future__ import annotations

import logging
import sys

from typing import Any


class _LoggerHolder:
    """Holder for the global logger instance."""

    instance: logging.Logger | None = None


def get_logger() -> logging.Logger:
    """Get the fedsignin logger instance.

    The level and format come from ``LogSettings`` on first use.

    Returns
    -------
    logging.Logger
        The fedsignin logger configured with a stream handler.
    """
    if _LoggerHolder.instance is None:
        from .config import get_settings

        log_settings = get_settings().log
        logger = logging.getLogger("fedsignin")
        logger.setLevel(log_settings.level)

        if not logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setLevel(logging.DEBUG)
            handler.setFormatter(logging.Formatter(log_settings.format))
            logger.addHandler(handler)

        _LoggerHolder.instance = logger

    return _LoggerHolder.instance


def set_level(level: int | str) -> None:
    """Set the package logging level.

    Parameters
    ----------
    level : int or str
        The logging level (e.g., logging.DEBUG, "debug").
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())
    get_logger().setLevel(level)


def enable_debug() -> None:
    """Log flow transitions, request details and backend calls."""
    set_level(logging.DEBUG)


def log_listener_error(listener: Any, exc: BaseException) -> None:
    """Log a session listener failure with its traceback.

    Parameters
    ----------
    listener : callable
        The listener that raised.
    exc : BaseException
        The exception that was raised.
    """
    name = getattr(listener, "__qualname__", repr(listener))
    get_logger().exception(f"Session listener '{name}' failed: {exc}")


# Substrings of key names whose values never reach the logs
_SENSITIVE_KEYS = (
    "secret",
    "password",
    "apikey",
    "api_key",
    "token",
    "credential",
    "key",
    "postbody",
    "sessionid",
)

_REDACTED = "[REDACTED]"


def _is_sensitive(key: Any) -> bool:
    lowered = str(key).lower()
    return any(marker in lowered for marker in _SENSITIVE_KEYS)


def redact_sensitive_data(
    data: dict[str, Any] | list[Any] | str | None, max_depth: int = 5
) -> dict[str, Any] | list[Any] | str | None:
    """Return a copy of ``data`` safe to log.

    Values under keys that look like secrets (tokens, keys, passwords,
    SAML post bodies, handshake session ids) are replaced with
    ``"[REDACTED]"`` at any nesting depth.

    Parameters
    ----------
    data : dict or list or str or None
        The data to redact.
    max_depth : int, optional
        Containers nested deeper than this are replaced with
        ``"[MAX_DEPTH]"`` (default: 5).

    Returns
    -------
    dict or list or str or None
        The redacted copy.
    """
    if max_depth <= 0:
        return "[MAX_DEPTH]"
    if isinstance(data, dict):
        return {
            k: _REDACTED if _is_sensitive(k) else redact_sensitive_data(v, max_depth - 1)
            for k, v in data.items()
        }
    if isinstance(data, list):
        return [redact_sensitive_data(item, max_depth - 1) for item in data]
    return data
