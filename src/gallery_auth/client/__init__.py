"""Client runtime: credential cache, refresh coordination and popup login."""

from .broadcast import SessionBroadcaster
from .popup import (
    OAUTH_MESSAGE_TYPE,
    CallbackSurface,
    OAuthMessage,
    OAuthStatus,
    PopupBridge,
    PopupOutcome,
    PopupResult,
)
from .session import LoginFailed, SessionManager
from .storage import FileSessionStorage, MemorySessionStorage, SessionStorage

__all__ = [
    "OAUTH_MESSAGE_TYPE",
    "CallbackSurface",
    "FileSessionStorage",
    "LoginFailed",
    "MemorySessionStorage",
    "OAuthMessage",
    "OAuthStatus",
    "PopupBridge",
    "PopupOutcome",
    "PopupResult",
    "SessionBroadcaster",
    "SessionManager",
    "SessionStorage",
]
