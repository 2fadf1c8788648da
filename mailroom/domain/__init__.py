"""Domain models for the mailroom service."""

from .models import (
    SINGLE_SHOT_TYPES,
    ActivityRecord,
    EventStatus,
    NotificationEvent,
    NotificationType,
    Recipient,
    ScheduledNotification,
    is_single_shot,
)

__all__ = [
    "ActivityRecord",
    "EventStatus",
    "NotificationEvent",
    "NotificationType",
    "Recipient",
    "ScheduledNotification",
    "SINGLE_SHOT_TYPES",
    "is_single_shot",
]
