"""User lifecycle flows: activity tracking and the signup welcome sequence."""

from datetime import datetime
from typing import Any, Callable, ContextManager, Dict, Optional

from sqlalchemy.orm import Session

from mailroom.domain.models import ActivityRecord, NotificationEvent, NotificationType
from mailroom.logging import get_logger
from mailroom.logging.context import log_context
from mailroom.notifications.models import NotFoundError, ValidationError
from mailroom.notifications.pipeline import SendPipeline
from mailroom.persistence import (
    ActivityRepository,
    PersistenceError,
    RecipientRepository,
    ScheduledNotificationRepository,
    get_session,
)
from mailroom.scheduler.deferred import NotificationScheduler
from mailroom.utils.text import sanitize_for_log
from mailroom.utils.timestamps import utc_now

logger = get_logger(__name__, component="lifecycle")

LOGIN_EVENT = "login"


class LifecycleService:
    """Records user activity and runs the welcome sequence on signup."""

    def __init__(
        self,
        pipeline: SendPipeline,
        scheduler: NotificationScheduler,
        session_factory: Callable[[], ContextManager[Session]] = get_session,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.pipeline = pipeline
        self.scheduler = scheduler
        self.session_factory = session_factory
        self.clock = clock

    def record_activity(
        self, user_id: str, event: str, metadata: Optional[Dict[str, Any]] = None
    ) -> Optional[ActivityRecord]:
        """Append an activity record.

        Best-effort: a store failure is logged and None is returned.
        """
        try:
            with self.session_factory() as session:
                record = ActivityRepository(session).append(
                    user_id, event, occurred_at=self.clock(), metadata=metadata
                )
        except PersistenceError as e:
            logger.error(
                f"Failed to record {sanitize_for_log(event)} activity for user {user_id}: {e}",
                extra={"event": "lifecycle.activity.failed"},
            )
            return None

        logger.debug(
            f"Recorded {sanitize_for_log(event)} activity for user {user_id}",
            extra={"event": "lifecycle.activity.recorded"},
        )
        return record

    def last_activity(self, user_id: str, event: str) -> Optional[datetime]:
        """Return when ``event`` last happened for the user, or None.

        Raises:
            PersistenceError: If activity cannot be read
        """
        with self.session_factory() as session:
            record = ActivityRepository(session).last_occurrence(user_id, event)
        return record.occurred_at if record else None

    def send_welcome(self, user_id: str) -> NotificationEvent:
        """Run the signup sequence for a user.

        Records a login, sends the (idempotent) welcome email and schedules
        the day-3 nurture email unless one is already pending.

        Returns:
            The welcome event (pre-existing if the welcome was already handled)

        Raises:
            ValidationError: If ``user_id`` is empty
            NotFoundError: If the user does not exist or has no address
            DeliveryError: If the welcome email could not be delivered
            PersistenceError: If the store cannot be accessed
        """
        if not user_id:
            raise ValidationError("User ID is required")

        with log_context(user_id=user_id):
            with self.session_factory() as session:
                recipient = RecipientRepository(session).get(user_id)
            if recipient is None:
                raise NotFoundError(f"User {user_id} not found or missing email")

            self.record_activity(user_id, LOGIN_EVENT, {"source": "welcome_email_trigger"})

            event = self.pipeline.send(
                user_id,
                recipient.email,
                NotificationType.WELCOME,
                payload={"user_name": recipient.first_name or ""},
            )

            with self.session_factory() as session:
                pending = ScheduledNotificationRepository(session).find_pending(
                    user_id, NotificationType.NURTURE_DAY3
                )
            if pending:
                logger.info(
                    f"Nurture email already scheduled for user {user_id}",
                    extra={"event": "lifecycle.nurture.exists", "schedule_id": pending[0].id},
                )
            else:
                self.scheduler.schedule_nurture(user_id)

            logger.info(
                f"Welcome sequence complete for user {user_id}",
                extra={"event": "lifecycle.welcome.completed", "event_id": event.id},
            )
            return event
