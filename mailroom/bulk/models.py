"""Data models for bulk announcement dispatch."""

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class BulkContent:
    """
    Announcement content shared by every recipient.

    ``html`` and ``text`` may contain ``{{first_name}}``, ``{{last_name}}``
    and ``{{email}}`` placeholders.

    Attributes:
        subject: Subject line
        html: HTML body (required)
        text: Optional plain text body
    """

    subject: str
    html: str
    text: Optional[str] = None


@dataclass
class RecipientOutcome:
    """
    Result of delivering to one recipient.

    Attributes:
        email: Recipient address
        success: Whether any attempt succeeded
        attempts: Number of transport attempts made
        message_id: Provider id of the successful attempt
        error: Last error message if every attempt failed
    """

    email: str
    success: bool
    attempts: int
    message_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class BulkError:
    """A recipient that could not be reached after every attempt."""

    email: str
    error: str


@dataclass
class BulkResult:
    """
    Aggregate outcome of a bulk dispatch.

    Attributes:
        total_users: Number of recipients
        successful: Recipients delivered to
        failed: Recipients whose every attempt failed
        errors: One entry per failed recipient
        batches: Size of each batch in dispatch order
    """

    total_users: int = 0
    successful: int = 0
    failed: int = 0
    errors: List[BulkError] = field(default_factory=list)
    batches: List[int] = field(default_factory=list)

    def record(self, outcome: RecipientOutcome) -> None:
        """Fold one recipient outcome into the totals."""
        if outcome.success:
            self.successful += 1
        else:
            self.failed += 1
            self.errors.append(BulkError(email=outcome.email, error=outcome.error or "Unknown error"))

    def to_dict(self) -> dict:
        return {
            "total_users": self.total_users,
            "successful": self.successful,
            "failed": self.failed,
            "errors": [{"email": e.email, "error": e.error} for e in self.errors],
        }
