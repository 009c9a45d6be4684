"""
Application logging setup.

Handlers attach to ``app.logger``; structured ``extra={...}`` fields passed by
the services are appended to each line as ``key=value`` pairs.
"""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler

from flask import Flask

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RESERVED_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class StructuredFormatter(logging.Formatter):
    """Formatter that renders ``extra`` fields after the message."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = {key: value for key, value in vars(record).items() if key not in _RESERVED_ATTRS}
        if not extras:
            return line
        rendered = " ".join(f"{key}={value!r}" for key, value in sorted(extras.items()))
        return f"{line} | {rendered}"


def _resolve_level(value) -> int:
    level = logging.getLevelName(str(value or "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logging(app: Flask) -> None:
    """Configure ``app.logger`` from ``LOG_LEVEL`` and the handler flags."""

    level = _resolve_level(app.config.get("LOG_LEVEL"))
    formatter = StructuredFormatter(LOG_FORMAT)

    # Re-running setup (tests rebuild the app) must not stack handlers.
    for handler in list(app.logger.handlers):
        if getattr(handler, "_contact_intake_handler", False):
            app.logger.removeHandler(handler)
            handler.close()

    handlers: list[logging.Handler] = []
    if app.config.get("ENABLE_CONSOLE_LOGGING", True):
        handlers.append(logging.StreamHandler())
    if app.config.get("ENABLE_FILE_LOGGING", False):
        log_file = app.config.get("LOG_FILE") or "logs/contacts.log"
        directory = os.path.dirname(log_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        handlers.append(RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=5))

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler._contact_intake_handler = True  # type: ignore[attr-defined]
        app.logger.addHandler(handler)

    app.logger.setLevel(level)
