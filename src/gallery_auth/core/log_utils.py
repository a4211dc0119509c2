"""Structured logging helpers for the auth core.

This module purposefully restricts **which** contextual attributes are attached
to log records in order to avoid accidentally leaking secrets.  All helpers
ONLY inject the following *non-sensitive* fields:

- ``attempt_id``     – Login attempt identifier (first 6 chars kept)
- ``provider``       – Identity provider name (``github``)
- ``user_id``        – Local user id (first 6 chars kept)
- ``correlation_id`` – Request correlation id set by the HTTP middleware

Usage
-----
>>> from gallery_auth.core.log_utils import get_auth_logger
>>> log = get_auth_logger(attempt_id="9f2c4e...", provider="github")
>>> log.info("Login attempt started")
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, MutableMapping

_TRUNCATED_KEYS = ("attempt_id", "user_id")


class _AuthLoggerAdapter(logging.LoggerAdapter):
    """Inject whitelisted auth context into log records."""

    extra_keys = ("attempt_id", "provider", "user_id", "correlation_id")

    def __init__(self, logger: logging.Logger, extra: Mapping[str, Any] | None = None):
        extra_clean: MutableMapping[str, Any] = {}
        for k in self.extra_keys:
            if not extra or extra.get(k) is None:
                continue
            if k in _TRUNCATED_KEYS:
                extra_clean[k] = str(extra[k])[:6]
            else:
                extra_clean[k] = extra[k]
        super().__init__(logger, extra_clean)

    def process(self, msg: str, kwargs: MutableMapping[str, Any]):
        if "extra" not in kwargs or kwargs["extra"] is None:
            kwargs["extra"] = {}
        # merge but do not overwrite call-site provided extras
        for k, v in self.extra.items():
            kwargs["extra"].setdefault(k, v)
        return msg, kwargs

    def bind(self, **context: Any) -> "_AuthLoggerAdapter":
        """Return a new adapter with *context* merged over the current one."""
        merged = {**self.extra, **context}
        return _AuthLoggerAdapter(self.logger, merged)


def get_auth_logger(
    *,
    base_logger_name: str = "gallery-auth.core",
    attempt_id: str | None = None,
    provider: str | None = None,
    user_id: str | None = None,
    correlation_id: str | None = None,
) -> _AuthLoggerAdapter:
    """Return a LoggerAdapter pre-filled with auth context."""
    logger = logging.getLogger(base_logger_name)
    return _AuthLoggerAdapter(
        logger,
        {
            "attempt_id": attempt_id,
            "provider": provider,
            "user_id": user_id,
            "correlation_id": correlation_id,
        },
    )
