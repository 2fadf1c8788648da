"""Re-engagement policy engine for inactive users."""

from .engine import ReengagementEngine
from .models import ReengageError, ReengageResult

__all__ = [
    "ReengagementEngine",
    "ReengageError",
    "ReengageResult",
]
