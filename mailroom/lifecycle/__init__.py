"""User lifecycle flows (activity tracking, welcome sequence)."""

from .service import LOGIN_EVENT, LifecycleService

__all__ = [
    "LifecycleService",
    "LOGIN_EVENT",
]
