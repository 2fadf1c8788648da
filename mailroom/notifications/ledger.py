"""Durable record of every notification attempt.

The ledger is the idempotency gate for single-shot notification types and
the source of truth for cooldown checks. Each operation runs in its own
short session that commits immediately, so a queued row is visible to
concurrent senders before the transport call starts.
"""

from datetime import datetime
from typing import Any, Callable, ContextManager, Dict, List, Optional

from sqlalchemy.orm import Session

from mailroom.domain.models import EventStatus, NotificationEvent, NotificationType, is_single_shot
from mailroom.logging import get_logger
from mailroom.persistence import (
    NotificationEventRepository,
    PersistenceError,
    RecordNotFoundError,
    get_session,
)
from mailroom.utils.timestamps import utc_now

from .models import NotFoundError, ValidationError

logger = get_logger(__name__, component="ledger")

MAX_PAGE_SIZE = 200


def dedupe_key_for(user_id: str, notification_type: NotificationType) -> Optional[str]:
    """Return the unique key that guards single-shot types, None for other types."""
    if not is_single_shot(notification_type):
        return None
    return f"{user_id}:{NotificationType(notification_type).value}"


class EventLedger:
    """Reads and writes notification events."""

    def __init__(
        self,
        session_factory: Callable[[], ContextManager[Session]] = get_session,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.session_factory = session_factory
        self.clock = clock

    def find_active_event(
        self, user_id: str, notification_type: NotificationType
    ) -> Optional[NotificationEvent]:
        """Return the live (queued or sent) event for a single-shot type.

        Always None for recurring types, which have no idempotency gate.

        Raises:
            PersistenceError: If the store cannot be read
        """
        if not is_single_shot(notification_type):
            return None
        with self.session_factory() as session:
            return NotificationEventRepository(session).find_active(user_id, notification_type)

    def create(
        self,
        user_id: str,
        notification_type: NotificationType,
        recipient_address: str,
        subject: Optional[str],
        payload: Optional[Dict[str, Any]] = None,
    ) -> NotificationEvent:
        """Insert a queued event.

        Raises:
            DataIntegrityError: If a live single-shot event already exists
            PersistenceError: If the store cannot be written
        """
        with self.session_factory() as session:
            event = NotificationEventRepository(session).create(
                user_id=user_id,
                notification_type=notification_type,
                recipient_address=recipient_address,
                subject=subject,
                payload=payload or {},
                created_at=self.clock(),
                dedupe_key=dedupe_key_for(user_id, notification_type),
            )

        logger.debug(
            f"Queued {event.notification_type.value} event {event.id}",
            extra={"event": "ledger.event.queued", "event_id": event.id},
        )
        return event

    def mark_sent(self, event_id: int, external_message_id: Optional[str]) -> bool:
        """Move an event to ``sent``. Best-effort: store errors are logged, not raised.

        Returns:
            True if the event transitioned
        """
        return self._transition(event_id, EventStatus.SENT, external_message_id=external_message_id)

    def mark_failed(self, event_id: int, error_message: str) -> bool:
        """Move an event to ``failed``. Best-effort: store errors are logged, not raised.

        Returns:
            True if the event transitioned
        """
        return self._transition(event_id, EventStatus.FAILED, error=error_message)

    def _transition(
        self,
        event_id: int,
        status: EventStatus,
        external_message_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> bool:
        try:
            with self.session_factory() as session:
                updated = NotificationEventRepository(session).transition(
                    event_id, status, external_message_id=external_message_id, error=error
                )
        except RecordNotFoundError as e:
            logger.error(
                f"Cannot mark event {event_id} {status.value}: {e}",
                extra={"event": "ledger.event.missing", "event_id": event_id},
            )
            return False
        except PersistenceError as e:
            logger.error(
                f"Failed to mark event {event_id} {status.value}: {e}",
                extra={"event": "ledger.update.failed", "event_id": event_id},
                exc_info=True,
            )
            return False

        if not updated:
            logger.warning(
                f"Ignoring transition of event {event_id} to {status.value}: already terminal",
                extra={"event": "ledger.event.already_terminal", "event_id": event_id},
            )
            return False

        logger.debug(
            f"Event {event_id} marked {status.value}",
            extra={"event": f"ledger.event.{status.value}", "event_id": event_id},
        )
        return True

    def has_recent_event(
        self,
        user_id: str,
        notification_type: NotificationType,
        status: EventStatus,
        since: datetime,
    ) -> bool:
        """Return True if a matching event was recorded at or after ``since``.

        Raises:
            PersistenceError: If the store cannot be read
        """
        with self.session_factory() as session:
            return NotificationEventRepository(session).exists_since(
                user_id, notification_type, status, since
            )

    def list_events(
        self,
        notification_type: Optional[NotificationType] = None,
        status: Optional[EventStatus] = None,
        user_id: Optional[str] = None,
        page: int = 1,
        limit: int = 50,
    ) -> List[NotificationEvent]:
        """List events newest first, one page at a time.

        Args:
            notification_type: Only events of this type
            status: Only events in this status
            user_id: Only events for this user
            page: 1-based page number
            limit: Page size (1 to 200)

        Raises:
            ValidationError: If page or limit is out of range
            PersistenceError: If the store cannot be read
        """
        if page < 1:
            raise ValidationError(f"page must be >= 1, got {page}")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}, got {limit}")

        with self.session_factory() as session:
            return NotificationEventRepository(session).list_events(
                notification_type=notification_type,
                status=status,
                user_id=user_id,
                offset=(page - 1) * limit,
                limit=limit,
            )

    def get(self, event_id: int) -> NotificationEvent:
        """Return one event.

        Raises:
            NotFoundError: If no event has this id
            PersistenceError: If the store cannot be read
        """
        with self.session_factory() as session:
            event = NotificationEventRepository(session).get(event_id)
        if event is None:
            raise NotFoundError(f"Notification event {event_id} not found")
        return event
