"""Core domain models for notifications, schedules, activity and recipients.

This module defines the data structures used throughout the application:
- NotificationType / EventStatus: enumerations shared by every component
- NotificationEvent: one row per send attempt (the ledger entry)
- ScheduledNotification: a deferred notification intent
- ActivityRecord: append-only user lifecycle event
- Recipient: addressable user with the profile fields used in templates
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator


class NotificationType(str, Enum):
    """Every category of user-facing email the service sends."""

    WELCOME = "welcome"
    NURTURE_DAY3 = "nurture_day3"
    NURTURE_WEEK1 = "nurture_week1"
    MEETING_REMINDER = "meeting_reminder"
    MEETING_SCHEDULED = "meeting_scheduled"
    REENGAGE = "reengage"
    NEW_MESSAGE = "new_message"
    REVIEW_REQUEST = "review_request"
    BULK_ANNOUNCEMENT = "bulk_announcement"
    WELCOME_BULK = "welcome_bulk"


# Delivered at most once per user; enforced by the ledger's dedupe key.
SINGLE_SHOT_TYPES = frozenset({NotificationType.WELCOME, NotificationType.NURTURE_DAY3})


def is_single_shot(notification_type: NotificationType) -> bool:
    """Return True if ``notification_type`` may be delivered only once per user."""
    return NotificationType(notification_type) in SINGLE_SHOT_TYPES


class EventStatus(str, Enum):
    """Lifecycle states of a NotificationEvent."""

    QUEUED = "queued"
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (EventStatus.SENT, EventStatus.FAILED)


def _to_utc(v: Optional[datetime]) -> Optional[datetime]:
    if v is None:
        return None
    if v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v.astimezone(timezone.utc)


class NotificationEvent(BaseModel):
    """A single notification attempt and its outcome.

    Created as ``queued`` before the transport call and moved exactly once to
    ``sent`` (with the provider message id) or ``failed`` (with the error
    text). Events are never deleted.
    """

    id: int = Field(..., description="Ledger row id")
    user_id: str = Field(..., description="Owner of the notification")
    notification_type: NotificationType = Field(..., description="Notification category")
    status: EventStatus = Field(..., description="queued, sent, failed or skipped")
    recipient_address: str = Field(..., description="Email address the message went to")
    subject: Optional[str] = Field(None, description="Resolved subject line")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Template payload")
    external_message_id: Optional[str] = Field(None, description="Provider message id")
    error: Optional[str] = Field(None, description="Failure reason for failed events")
    created_at: datetime = Field(..., description="When the attempt was recorded (UTC)")

    @field_validator("created_at")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        return _to_utc(v)

    @property
    def is_handled(self) -> bool:
        """True if callers should treat this notification as already taken care of."""
        return self.status in (EventStatus.QUEUED, EventStatus.SENT)


class ScheduledNotification(BaseModel):
    """A notification intent waiting for ``run_after`` to elapse."""

    id: int = Field(..., description="Schedule row id")
    user_id: str = Field(..., description="Owner of the notification")
    notification_type: NotificationType = Field(..., description="Notification category")
    run_after: datetime = Field(..., description="Earliest delivery time (UTC)")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Template payload")
    created_at: Optional[datetime] = Field(None, description="When the intent was stored (UTC)")

    @field_validator("run_after", "created_at")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _to_utc(v)

    def is_due(self, now: datetime) -> bool:
        return self.run_after <= _to_utc(now)


class ActivityRecord(BaseModel):
    """An append-only user lifecycle event such as ``login``."""

    id: Optional[int] = None
    user_id: str
    event: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime

    @field_validator("occurred_at")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        return _to_utc(v)


class Recipient(BaseModel):
    """A user with a deliverable address and the fields templates personalize with."""

    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    @field_validator("email")
    @classmethod
    def strip_email(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("email cannot be empty")
        return stripped

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)

    def template_fields(self) -> Dict[str, str]:
        """Placeholder values for ``{{first_name}}``, ``{{last_name}}`` and ``{{email}}``."""
        return {
            "first_name": self.first_name or "",
            "last_name": self.last_name or "",
            "email": self.email,
        }
