"""
Session and access services for the coaching portal
"""

from .access_gate import AccessGate, GateDecision, GateOutcome, RedirectPolicy
from .backends import AuthBackend, BackendError, ProfileStore
from .notifications import NotificationQueue, Toast
from .rate_limiter import RateLimiter
from .session_registry import SessionRegistry
from .session_store import SessionStore

__all__ = [
    "AccessGate",
    "AuthBackend",
    "BackendError",
    "GateDecision",
    "GateOutcome",
    "NotificationQueue",
    "ProfileStore",
    "RateLimiter",
    "RedirectPolicy",
    "SessionRegistry",
    "SessionStore",
    "Toast",
]
