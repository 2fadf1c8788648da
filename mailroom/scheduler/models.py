"""Data models for scheduled notification processing."""

from dataclasses import dataclass, field
from typing import List


@dataclass
class ScheduleError:
    """
    A scheduled row that could not be delivered on this poll.

    Attributes:
        id: Scheduled notification id (the row is kept for the next poll)
        message: Why delivery failed
    """

    id: int
    message: str


@dataclass
class ProcessDueResult:
    """
    Summary of one poll over due scheduled notifications.

    Attributes:
        processed: Number of rows delivered (or idempotently skipped) and removed
        errors: Rows that failed and remain pending
    """

    processed: int = 0
    errors: List[ScheduleError] = field(default_factory=list)

    @property
    def had_errors(self) -> bool:
        return bool(self.errors)

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "errors": [{"id": e.id, "message": e.message} for e in self.errors],
        }
