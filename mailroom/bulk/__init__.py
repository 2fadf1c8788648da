"""Bulk announcement dispatch."""

from .dispatcher import BulkDispatcher, coerce_int, validate_batch_size, validate_delay_ms
from .models import BulkContent, BulkError, BulkResult, RecipientOutcome

__all__ = [
    "BulkDispatcher",
    "BulkContent",
    "BulkError",
    "BulkResult",
    "RecipientOutcome",
    "coerce_int",
    "validate_batch_size",
    "validate_delay_ms",
]
