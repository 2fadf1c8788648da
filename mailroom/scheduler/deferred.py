"""Deferred notification intents and the poll that promotes due ones.

Delivery is at-least-once: a row is removed only after the send pipeline
reports success (or an idempotent skip). Any failure leaves the row in
place for the next poll.
"""

from datetime import datetime, timedelta
from typing import Any, Callable, ContextManager, Dict, Optional

from sqlalchemy.orm import Session

from mailroom.domain.models import NotificationType, ScheduledNotification
from mailroom.logging import get_logger
from mailroom.logging.context import log_context
from mailroom.notifications.models import NotificationError, ValidationError
from mailroom.notifications.pipeline import SendPipeline
from mailroom.persistence import (
    PersistenceError,
    RecipientRepository,
    ScheduledNotificationRepository,
    get_session,
)
from mailroom.utils.timestamps import ensure_utc, format_timestamp, utc_now

from .models import ProcessDueResult, ScheduleError

logger = get_logger(__name__, component="scheduler")

NURTURE_DELAY_DAYS = 3
REMINDER_LEAD_TIME = timedelta(days=1)
LATE_REMINDER_DELAY = timedelta(minutes=1)


class NotificationScheduler:
    """Stores future-dated notification intents and delivers them when due."""

    def __init__(
        self,
        pipeline: SendPipeline,
        session_factory: Callable[[], ContextManager[Session]] = get_session,
        clock: Callable[[], datetime] = utc_now,
        poll_batch_limit: int = 100,
    ):
        """Initialize the scheduler.

        Args:
            pipeline: Send pipeline used for every due row
            session_factory: Context manager producing store sessions
            clock: Source of the current UTC time
            poll_batch_limit: Maximum rows processed per poll
        """
        self.pipeline = pipeline
        self.session_factory = session_factory
        self.clock = clock
        self.poll_batch_limit = poll_batch_limit

    def schedule(
        self,
        user_id: str,
        notification_type: NotificationType,
        run_after: datetime,
        payload: Optional[Dict[str, Any]] = None,
    ) -> ScheduledNotification:
        """Persist an intent to send ``notification_type`` no earlier than ``run_after``.

        Raises:
            ValidationError: If ``run_after`` is not strictly in the future
            PersistenceError: If the store cannot be written
        """
        notification_type = NotificationType(notification_type)
        run_after = ensure_utc(run_after)
        now = self.clock()

        if run_after <= now:
            raise ValidationError(
                f"run_after must be in the future (got {format_timestamp(run_after)}, "
                f"now {format_timestamp(now)})"
            )

        with self.session_factory() as session:
            scheduled = ScheduledNotificationRepository(session).add(
                user_id=user_id,
                notification_type=notification_type,
                run_after=run_after,
                payload=payload or {},
                created_at=now,
            )

        logger.info(
            f"Scheduled {notification_type.value} for user {user_id} at {format_timestamp(run_after)}",
            extra={
                "event": "scheduler.notification.scheduled",
                "schedule_id": scheduled.id,
                "user_id": user_id,
            },
        )
        return scheduled

    def schedule_nurture(self, user_id: str, days: int = NURTURE_DELAY_DAYS) -> ScheduledNotification:
        """Schedule the day-3 nurture email ``days`` days from now."""
        return self.schedule(
            user_id,
            NotificationType.NURTURE_DAY3,
            self.clock() + timedelta(days=days),
            payload={"days_since_signup": days},
        )

    def schedule_meeting_reminder(
        self,
        user_id: str,
        meeting_id: str,
        meeting_title: str,
        starts_at: datetime,
        payload: Optional[Dict[str, Any]] = None,
    ) -> ScheduledNotification:
        """Schedule a reminder one day before a meeting starts.

        When the meeting is less than a day away the reminder goes out one
        minute from now. A reminder already pending for the same meeting is
        returned as is.

        Args:
            user_id: Participant to remind
            meeting_id: Meeting identifier
            meeting_title: Title shown in the reminder
            starts_at: Meeting start time
            payload: Extra template variables

        Raises:
            ValidationError: If required fields are missing or the meeting has started
            PersistenceError: If the store cannot be accessed
        """
        if not user_id or not meeting_id or not (meeting_title or "").strip() or starts_at is None:
            raise ValidationError(
                "User ID, meeting ID, meeting title, and start time are required"
            )

        starts_at = ensure_utc(starts_at)
        now = self.clock()
        if starts_at <= now:
            raise ValidationError(f"Meeting {meeting_id} has already started")

        with self.session_factory() as session:
            pending = ScheduledNotificationRepository(session).find_pending(
                user_id, NotificationType.MEETING_REMINDER
            )
        for existing in pending:
            if str(existing.payload.get("meeting_id")) == str(meeting_id):
                logger.info(
                    f"Reminder for meeting {meeting_id} already scheduled for user {user_id}",
                    extra={"event": "scheduler.reminder.exists", "schedule_id": existing.id},
                )
                return existing

        run_after = starts_at - REMINDER_LEAD_TIME
        if run_after <= now:
            run_after = now + LATE_REMINDER_DELAY

        reminder_payload = {
            **(payload or {}),
            "meeting_id": meeting_id,
            "meeting_title": meeting_title.strip(),
            "starts_at": format_timestamp(starts_at),
        }
        return self.schedule(user_id, NotificationType.MEETING_REMINDER, run_after, reminder_payload)

    def process_due(self) -> ProcessDueResult:
        """Deliver every due row (up to the poll limit), oldest first.

        Returns:
            ProcessDueResult with the number delivered and per-row errors

        Raises:
            PersistenceError: If due rows cannot be selected
        """
        now = self.clock()
        with self.session_factory() as session:
            due = ScheduledNotificationRepository(session).get_due(now, limit=self.poll_batch_limit)

        logger.info(
            f"Processing {len(due)} due scheduled notifications",
            extra={"event": "scheduler.poll.started", "due_count": len(due)},
        )

        result = ProcessDueResult()
        for scheduled in due:
            with log_context(schedule_id=scheduled.id, user_id=scheduled.user_id):
                error = self._deliver(scheduled)
            if error is None:
                result.processed += 1
            else:
                result.errors.append(ScheduleError(id=scheduled.id, message=error))

        logger.info(
            f"Scheduled notification poll complete: {result.processed} processed, "
            f"{len(result.errors)} errors",
            extra={
                "event": "scheduler.poll.completed",
                "processed": result.processed,
                "error_count": len(result.errors),
            },
        )
        return result

    def _deliver(self, scheduled: ScheduledNotification) -> Optional[str]:
        """Send one due row and remove it on success. Returns an error message on failure."""
        try:
            with self.session_factory() as session:
                recipient = RecipientRepository(session).get(scheduled.user_id)

            if recipient is None:
                message = f"No email address found for user {scheduled.user_id}"
                logger.warning(message, extra={"event": "scheduler.notification.no_address"})
                return message

            payload = {"user_name": recipient.first_name or "", **scheduled.payload}
            self.pipeline.send(
                scheduled.user_id,
                recipient.email,
                scheduled.notification_type,
                payload=payload,
            )

            with self.session_factory() as session:
                ScheduledNotificationRepository(session).delete(scheduled.id)

        except (NotificationError, PersistenceError) as e:
            logger.error(
                f"Failed to process scheduled notification {scheduled.id}: {e}",
                extra={"event": "scheduler.notification.failed", "error_type": type(e).__name__},
            )
            return str(e)

        logger.info(
            f"Delivered scheduled {scheduled.notification_type.value} to user {scheduled.user_id}",
            extra={"event": "scheduler.notification.delivered"},
        )
        return None
