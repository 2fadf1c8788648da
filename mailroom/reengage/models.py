"""Data models for re-engagement campaign runs."""

from dataclasses import dataclass, field
from typing import List


@dataclass
class ReengageError:
    """
    A candidate that could not be re-engaged on this run.

    Attributes:
        user_id: Candidate user
        message: Why the send failed
    """

    user_id: str
    message: str


@dataclass
class ReengageResult:
    """
    Summary of one re-engagement run.

    Attributes:
        processed: Number of candidates evaluated
        sent: Number of re-engagement emails delivered
        skipped: Candidates still inside the cooldown window
        errors: Candidates whose send failed
    """

    processed: int = 0
    sent: int = 0
    skipped: int = 0
    errors: List[ReengageError] = field(default_factory=list)

    @property
    def had_errors(self) -> bool:
        return bool(self.errors)

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "sent": self.sent,
            "skipped": self.skipped,
            "errors": [{"user_id": e.user_id, "message": e.message} for e in self.errors],
        }
