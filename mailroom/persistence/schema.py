"""Database schema definition and ORM models.

This module defines SQLAlchemy ORM models for the notification store and
conversion methods between ORM models and domain models. Timestamps are
stored as fixed-width ISO 8601 UTC strings so they sort lexicographically.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, Boolean, Column, ForeignKey, Index, Integer, String, Text, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, relationship

from mailroom.domain.models import (
    ActivityRecord,
    EventStatus,
    NotificationEvent,
    NotificationType,
    ScheduledNotification,
)
from mailroom.utils.timestamps import STORAGE_FORMAT

logger = logging.getLogger(__name__)

Base = declarative_base()


class NotificationEventModel(Base):
    """ORM model for the notification_events table (the ledger).

    ``dedupe_key`` is ``"<user_id>:<type>"`` for single-shot types while the
    event is not failed, NULL otherwise. The unique constraint lets the store
    reject a second live event for the same pair even under concurrent sends.
    """

    __tablename__ = "notification_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False)
    notification_type = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False)
    recipient_address = Column(String(320), nullable=False)
    subject = Column(Text, nullable=True)
    payload = Column(JSON, nullable=False, default=dict)
    external_message_id = Column(String(255), nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(String(50), nullable=False)
    dedupe_key = Column(String(200), nullable=True, unique=True)

    __table_args__ = (
        Index("idx_events_user_type_status", "user_id", "notification_type", "status"),
        Index("idx_events_created_at", "created_at"),
    )

    def to_domain(self) -> NotificationEvent:
        return NotificationEvent(
            id=self.id,
            user_id=self.user_id,
            notification_type=NotificationType(self.notification_type),
            status=EventStatus(self.status),
            recipient_address=self.recipient_address,
            subject=self.subject,
            payload=self.payload or {},
            external_message_id=self.external_message_id,
            error=self.error,
            created_at=_parse_datetime(self.created_at),
        )


class ScheduledNotificationModel(Base):
    """ORM model for the scheduled_notifications table.

    Rows are deleted once delivered; a row still present is still pending.
    """

    __tablename__ = "scheduled_notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False)
    notification_type = Column(String(50), nullable=False)
    run_after = Column(String(50), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    created_at = Column(String(50), nullable=False)

    __table_args__ = (
        Index("idx_scheduled_run_after", "run_after"),
        Index("idx_scheduled_user_type", "user_id", "notification_type"),
    )

    def to_domain(self) -> ScheduledNotification:
        return ScheduledNotification(
            id=self.id,
            user_id=self.user_id,
            notification_type=NotificationType(self.notification_type),
            run_after=_parse_datetime(self.run_after),
            payload=self.payload or {},
            created_at=_parse_datetime(self.created_at),
        )


class UserActivityModel(Base):
    """ORM model for the append-only user_activity table."""

    __tablename__ = "user_activity"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False)
    event = Column(String(64), nullable=False)
    # "metadata" is reserved on declarative classes
    event_metadata = Column("metadata", JSON, nullable=False, default=dict)
    occurred_at = Column(String(50), nullable=False)

    __table_args__ = (
        Index("idx_activity_user_event_time", "user_id", "event", "occurred_at"),
    )

    def to_domain(self) -> ActivityRecord:
        return ActivityRecord(
            id=self.id,
            user_id=self.user_id,
            event=self.event,
            metadata=self.event_metadata or {},
            occurred_at=_parse_datetime(self.occurred_at),
        )


class ProfileModel(Base):
    """Public user profile, owned by the surrounding application."""

    __tablename__ = "profiles"

    id = Column(String(64), primary_key=True)
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)
    is_banned = Column(Boolean, nullable=False, default=False)

    private_info = relationship("UserPrivateInfoModel", uselist=False, back_populates="profile")


class UserPrivateInfoModel(Base):
    """Private one-to-one profile extension holding the delivery address."""

    __tablename__ = "user_private_info"

    id = Column(String(64), ForeignKey("profiles.id"), primary_key=True)
    email = Column(String(320), nullable=True)

    profile = relationship("ProfileModel", back_populates="private_info")


def format_datetime(dt: Optional[datetime]) -> Optional[str]:
    """Format datetime as a fixed-width ISO 8601 UTC string for storage."""
    if dt is None:
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    else:
        dt = dt.astimezone(timezone.utc)

    return dt.strftime(STORAGE_FORMAT)


def _parse_datetime(dt_str: Optional[str]) -> Optional[datetime]:
    """Parse a stored ISO 8601 string back into an aware UTC datetime."""
    if not dt_str:
        return None

    dt_str = dt_str.rstrip("Z")

    try:
        dt = datetime.strptime(dt_str, "%Y-%m-%dT%H:%M:%S.%f")
    except ValueError:
        dt = datetime.strptime(dt_str, "%Y-%m-%dT%H:%M:%S")

    return dt.replace(tzinfo=timezone.utc)


def create_schema(engine: Engine) -> None:
    """Create all tables and indexes if they don't exist (idempotent)."""
    logger.info("Creating database schema if not exists")

    try:
        Base.metadata.create_all(engine, checkfirst=True)
        tables = inspect(engine).get_table_names()
        logger.info(f"Database schema ready. Tables: {', '.join(tables)}")
    except Exception as e:
        logger.error(f"Failed to create database schema: {e}", exc_info=True)
        raise
