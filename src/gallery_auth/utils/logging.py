"""Logging helpers shared by the server and the client runtime."""

from __future__ import annotations

import logging
import os

_DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def mask_sensitive(value: str | None, keep_chars: int = 4) -> str:
    """Return *value* with everything but the first *keep_chars* replaced by ``*``.

    Used whenever a token, state value or code has to appear in a log line.
    """
    if not value:
        return ""
    if len(value) <= keep_chars:
        return "*" * len(value)
    return value[:keep_chars] + "*" * (len(value) - keep_chars)


def setup_logging(level: int | str | None = None) -> logging.Logger:
    """Configure the ``gallery-auth`` logger hierarchy.

    The level defaults to ``GALLERY_LOG_LEVEL`` (``INFO`` when unset).
    """
    if level is None:
        level = os.getenv("GALLERY_LOG_LEVEL", "INFO")
    if isinstance(level, str):
        level = level.upper()
    logger = logging.getLogger("gallery-auth")
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_DEFAULT_FORMAT))
        logger.addHandler(handler)
    return logger
