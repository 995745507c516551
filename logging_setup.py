"""Process wide logging configuration with credential redaction.

Every log record is redacted when it is created, so handlers installed by
third-party libraries after :func:`configure_logging` never see API keys,
secrets or request signatures either.
"""

from __future__ import annotations

import logging
import re
import sys
from typing import Any, Callable, Optional, TextIO

REDACTED = "***REDACTED***"
LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"

_SENSITIVE_KEYS = (
    "X-MBX-APIKEY",
    "X-BAPI-API-KEY",
    "X-BAPI-SIGN",
    "api_secret",
    "apiSecret",
    "api_key",
    "apiKey",
    "secret",
    "signature",
)
_SENSITIVE_PATTERN = re.compile(
    r"(?P<key>" + "|".join(re.escape(key) for key in _SENSITIVE_KEYS) + r")"
    r"(?P<sep>['\"]?\s*[:=]\s*['\"]?)"
    r"(?P<value>[^'\"&,\s}\]]+)",
    re.IGNORECASE,
)

_HANDLER_MARKER = "_risk_monitor_handler"
_original_factory: Optional[Callable[..., logging.LogRecord]] = None


def redact(message: str) -> str:
    """Replace the values of sensitive keys in ``message``."""

    return _SENSITIVE_PATTERN.sub(lambda match: f"{match.group('key')}{match.group('sep')}{REDACTED}", message)


def _redacting_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
    assert _original_factory is not None
    record = _original_factory(*args, **kwargs)
    try:
        message = record.getMessage()
    except (TypeError, ValueError):
        return record
    redacted = redact(message)
    if redacted != message:
        record.msg = redacted
        record.args = None
    return record


def _install_record_factory() -> None:
    global _original_factory
    if _original_factory is not None:
        return
    _original_factory = logging.getLogRecordFactory()
    logging.setLogRecordFactory(_redacting_factory)


def debug_to_logging_level(debug: int) -> int:
    """Map a debug verbosity integer to a logging level."""

    if debug <= 0:
        return logging.WARNING
    if debug == 1:
        return logging.INFO
    return logging.DEBUG


def configure_logging(debug: int = 1, stream_target: Optional[TextIO] = None) -> logging.Handler:
    """Install the redacting stream handler on the root logger and return it."""

    _install_record_factory()
    level = debug_to_logging_level(debug)
    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            root.removeHandler(handler)

    handler = logging.StreamHandler(stream_target or sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    setattr(handler, _HANDLER_MARKER, True)
    root.addHandler(handler)
    root.setLevel(level)
    logging.getLogger("risk_monitor").setLevel(level)
    if debug < 3:
        # aiohttp and ccxt are chatty at DEBUG
        logging.getLogger("aiohttp").setLevel(max(level, logging.INFO))
        logging.getLogger("ccxt").setLevel(max(level, logging.INFO))
    return handler


__all__ = ["REDACTED", "configure_logging", "debug_to_logging_level", "redact"]
