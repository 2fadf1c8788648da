"""Test helper utilities for mailroom tests."""

from .clock import FrozenClock
from .transport import RecordingTransport
from .users import add_activity, seed_user

__all__ = ["FrozenClock", "RecordingTransport", "add_activity", "seed_user"]
