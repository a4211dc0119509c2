"""Clock abstraction for testable time handling in the auth core.

Credential verification and the client cache freshness checks depend on an
injected ``Clock`` instead of calling ``time.time()`` directly.

Example
-------
>>> from gallery_auth.core.clock import default_clock
>>> isinstance(default_clock(), float)
True
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Callable protocol returning *seconds* since the UNIX epoch."""

    def __call__(self) -> float: ...


def default_clock() -> float:
    """Default implementation that delegates to ``time.time()``."""
    return time.time()


class ManualClock:
    """Settable clock used by tests and simulations."""

    def __init__(self, now: float = 0.0) -> None:
        self.now = float(now)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds
