"""Data access layer (repositories) for persistence operations.

Repositories wrap a caller-owned SQLAlchemy session, translate driver errors
into persistence exceptions and return domain models rather than ORM models.
They flush but never commit; the session scope decides.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from mailroom.domain.models import (
    ActivityRecord,
    EventStatus,
    NotificationEvent,
    NotificationType,
    Recipient,
    ScheduledNotification,
)

from .exceptions import DataIntegrityError, PersistenceError, RecordNotFoundError
from .schema import (
    NotificationEventModel,
    ProfileModel,
    ScheduledNotificationModel,
    UserActivityModel,
    UserPrivateInfoModel,
    format_datetime,
)

logger = logging.getLogger(__name__)


class NotificationEventRepository:
    """Repository for ledger rows (one per notification attempt)."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, event_id: int) -> Optional[NotificationEvent]:
        """Retrieve an event by id, or None if it does not exist.

        Raises:
            PersistenceError: If database error occurs
        """
        try:
            model = self.session.get(NotificationEventModel, event_id)
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving notification event {event_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve notification event: {e}") from e

    def find_active(
        self, user_id: str, notification_type: NotificationType
    ) -> Optional[NotificationEvent]:
        """Return the newest non-failed event for (user_id, notification_type).

        Raises:
            PersistenceError: If database error occurs
        """
        try:
            stmt = (
                select(NotificationEventModel)
                .where(
                    NotificationEventModel.user_id == user_id,
                    NotificationEventModel.notification_type == NotificationType(notification_type).value,
                    NotificationEventModel.status != EventStatus.FAILED.value,
                )
                .order_by(NotificationEventModel.created_at.desc(), NotificationEventModel.id.desc())
                .limit(1)
            )
            model = self.session.execute(stmt).scalar_one_or_none()
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(
                f"Error looking up active {notification_type} event for user {user_id}: {e}",
                exc_info=True,
            )
            raise PersistenceError(f"Failed to look up notification event: {e}") from e

    def create(
        self,
        user_id: str,
        notification_type: NotificationType,
        recipient_address: str,
        subject: Optional[str],
        payload: Dict[str, Any],
        created_at: datetime,
        dedupe_key: Optional[str] = None,
    ) -> NotificationEvent:
        """Insert a queued event.

        Raises:
            DataIntegrityError: If ``dedupe_key`` is already taken
            PersistenceError: If database error occurs
        """
        try:
            model = NotificationEventModel(
                user_id=user_id,
                notification_type=NotificationType(notification_type).value,
                status=EventStatus.QUEUED.value,
                recipient_address=recipient_address,
                subject=subject,
                payload=payload or {},
                created_at=format_datetime(created_at),
                dedupe_key=dedupe_key,
            )
            self.session.add(model)
            self.session.flush()
            return model.to_domain()
        except IntegrityError as e:
            # Expected when a concurrent send already claimed the single-shot key
            logger.info(
                f"Duplicate live {notification_type} event for user {user_id}",
                extra={"event": "ledger.dedupe_conflict"},
            )
            raise DataIntegrityError(
                f"Notification event already exists for {user_id}/{notification_type}"
            ) from e
        except SQLAlchemyError as e:
            logger.error(f"Error creating notification event for user {user_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to create notification event: {e}") from e

    def transition(
        self,
        event_id: int,
        status: EventStatus,
        external_message_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> bool:
        """Move a queued event into a terminal status.

        Returns:
            True if the row was updated, False if it was already terminal

        Raises:
            RecordNotFoundError: If the event does not exist
            PersistenceError: If database error occurs
        """
        try:
            model = self.session.get(NotificationEventModel, event_id)
            if model is None:
                raise RecordNotFoundError(f"Notification event {event_id} not found")

            if EventStatus(model.status).is_terminal:
                return False

            model.status = EventStatus(status).value
            if external_message_id:
                model.external_message_id = external_message_id
            if error:
                model.error = error
            if status == EventStatus.FAILED:
                # Releases the single-shot key so a later retry can insert
                model.dedupe_key = None

            self.session.flush()
            return True

        except RecordNotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Error updating notification event {event_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to update notification event: {e}") from e

    def exists_since(
        self,
        user_id: str,
        notification_type: NotificationType,
        status: EventStatus,
        since: datetime,
    ) -> bool:
        """Check whether a matching event was created at or after ``since``.

        Raises:
            PersistenceError: If database error occurs
        """
        try:
            stmt = (
                select(NotificationEventModel.id)
                .where(
                    NotificationEventModel.user_id == user_id,
                    NotificationEventModel.notification_type == NotificationType(notification_type).value,
                    NotificationEventModel.status == EventStatus(status).value,
                    NotificationEventModel.created_at >= format_datetime(since),
                )
                .limit(1)
            )
            return self.session.execute(stmt).first() is not None
        except SQLAlchemyError as e:
            logger.error(f"Error checking recent events for user {user_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to check recent notification events: {e}") from e

    def list_events(
        self,
        notification_type: Optional[NotificationType] = None,
        status: Optional[EventStatus] = None,
        user_id: Optional[str] = None,
        offset: int = 0,
        limit: int = 50,
    ) -> List[NotificationEvent]:
        """List events newest first with optional filters.

        Raises:
            PersistenceError: If database error occurs
        """
        try:
            stmt = select(NotificationEventModel)
            if notification_type is not None:
                stmt = stmt.where(
                    NotificationEventModel.notification_type == NotificationType(notification_type).value
                )
            if status is not None:
                stmt = stmt.where(NotificationEventModel.status == EventStatus(status).value)
            if user_id is not None:
                stmt = stmt.where(NotificationEventModel.user_id == user_id)

            stmt = (
                stmt.order_by(NotificationEventModel.created_at.desc(), NotificationEventModel.id.desc())
                .offset(offset)
                .limit(limit)
            )
            return [model.to_domain() for model in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing notification events: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list notification events: {e}") from e


class ScheduledNotificationRepository:
    """Repository for deferred notification intents."""

    def __init__(self, session: Session):
        self.session = session

    def add(
        self,
        user_id: str,
        notification_type: NotificationType,
        run_after: datetime,
        payload: Dict[str, Any],
        created_at: datetime,
    ) -> ScheduledNotification:
        """Persist a new pending intent.

        Raises:
            PersistenceError: If database error occurs
        """
        try:
            model = ScheduledNotificationModel(
                user_id=user_id,
                notification_type=NotificationType(notification_type).value,
                run_after=format_datetime(run_after),
                payload=payload or {},
                created_at=format_datetime(created_at),
            )
            self.session.add(model)
            self.session.flush()
            return model.to_domain()
        except SQLAlchemyError as e:
            logger.error(f"Error scheduling {notification_type} for user {user_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to schedule notification: {e}") from e

    def get_due(self, now: datetime, limit: int = 100) -> List[ScheduledNotification]:
        """Return pending rows with ``run_after <= now``, oldest first.

        Raises:
            PersistenceError: If database error occurs
        """
        try:
            stmt = (
                select(ScheduledNotificationModel)
                .where(ScheduledNotificationModel.run_after <= format_datetime(now))
                .order_by(ScheduledNotificationModel.run_after.asc(), ScheduledNotificationModel.id.asc())
                .limit(limit)
            )
            return [model.to_domain() for model in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving due scheduled notifications: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve due scheduled notifications: {e}") from e

    def find_pending(
        self, user_id: str, notification_type: NotificationType
    ) -> List[ScheduledNotification]:
        """Return every pending row for a user and type.

        Raises:
            PersistenceError: If database error occurs
        """
        try:
            stmt = (
                select(ScheduledNotificationModel)
                .where(
                    ScheduledNotificationModel.user_id == user_id,
                    ScheduledNotificationModel.notification_type == NotificationType(notification_type).value,
                )
                .order_by(ScheduledNotificationModel.run_after.asc())
            )
            return [model.to_domain() for model in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving scheduled notifications for {user_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve scheduled notifications: {e}") from e

    def delete(self, schedule_id: int) -> bool:
        """Remove a delivered row.

        Returns:
            True if a row was deleted, False if it was already gone

        Raises:
            PersistenceError: If database error occurs
        """
        try:
            result = self.session.execute(
                delete(ScheduledNotificationModel).where(ScheduledNotificationModel.id == schedule_id)
            )
            self.session.flush()
            return result.rowcount > 0
        except SQLAlchemyError as e:
            logger.error(f"Error deleting scheduled notification {schedule_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to delete scheduled notification: {e}") from e


class ActivityRepository:
    """Repository for the append-only user activity log."""

    def __init__(self, session: Session):
        self.session = session

    def append(
        self,
        user_id: str,
        event: str,
        occurred_at: datetime,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ActivityRecord:
        """Record an activity.

        Raises:
            PersistenceError: If database error occurs
        """
        try:
            model = UserActivityModel(
                user_id=user_id,
                event=event,
                event_metadata=metadata or {},
                occurred_at=format_datetime(occurred_at),
            )
            self.session.add(model)
            self.session.flush()
            return model.to_domain()
        except SQLAlchemyError as e:
            logger.error(f"Error recording activity {event} for user {user_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to record user activity: {e}") from e

    def last_occurrence(self, user_id: str, event: str) -> Optional[ActivityRecord]:
        """Return the most recent record of ``event`` for a user.

        Raises:
            PersistenceError: If database error occurs
        """
        try:
            stmt = (
                select(UserActivityModel)
                .where(UserActivityModel.user_id == user_id, UserActivityModel.event == event)
                .order_by(UserActivityModel.occurred_at.desc(), UserActivityModel.id.desc())
                .limit(1)
            )
            model = self.session.execute(stmt).scalar_one_or_none()
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving last {event} for user {user_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve user activity: {e}") from e

    def users_inactive_since(self, event: str, cutoff: datetime) -> List[str]:
        """Return users whose latest ``event`` happened at or before ``cutoff``.

        Users who never produced ``event`` are not returned.

        Raises:
            PersistenceError: If database error occurs
        """
        try:
            last_seen = func.max(UserActivityModel.occurred_at)
            stmt = (
                select(UserActivityModel.user_id)
                .where(UserActivityModel.event == event)
                .group_by(UserActivityModel.user_id)
                .having(last_seen <= format_datetime(cutoff))
                .order_by(last_seen.asc(), UserActivityModel.user_id.asc())
            )
            return list(self.session.execute(stmt).scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error selecting users inactive since {cutoff}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to select inactive users: {e}") from e


class RecipientRepository:
    """Read-only access to user profiles and their private delivery address.

    The address lives in a one-to-one side table. Rows are always fetched
    through an explicit join on the email column, so callers get a plain
    optional string and never a nested related-row structure.
    """

    def __init__(self, session: Session):
        self.session = session

    def _base_query(self):
        return select(
            ProfileModel.id,
            ProfileModel.first_name,
            ProfileModel.last_name,
            UserPrivateInfoModel.email,
        ).join(UserPrivateInfoModel, UserPrivateInfoModel.id == ProfileModel.id, isouter=True)

    def get(self, user_id: str) -> Optional[Recipient]:
        """Return the recipient for ``user_id`` or None if the user has no usable address.

        Raises:
            PersistenceError: If database error occurs
        """
        try:
            row = self.session.execute(
                self._base_query().where(ProfileModel.id == user_id)
            ).first()
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving recipient {user_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve recipient: {e}") from e

        return _row_to_recipient(row) if row else None

    def get_email(self, user_id: str) -> Optional[str]:
        """Return only the delivery address for a user, if any."""
        recipient = self.get(user_id)
        return recipient.email if recipient else None

    def list_addressable(self, exclude_banned: bool = True) -> List[Recipient]:
        """Return every user with a non-empty address, ordered by id.

        Raises:
            PersistenceError: If database error occurs
        """
        stmt = self._base_query().where(
            and_(UserPrivateInfoModel.email.is_not(None), UserPrivateInfoModel.email != "")
        )
        if exclude_banned:
            stmt = stmt.where(ProfileModel.is_banned.is_(False))
        stmt = stmt.order_by(ProfileModel.id.asc())

        try:
            rows = self.session.execute(stmt).all()
        except SQLAlchemyError as e:
            logger.error(f"Error listing addressable recipients: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list recipients: {e}") from e

        return [recipient for recipient in map(_row_to_recipient, rows) if recipient]


def _row_to_recipient(row) -> Optional[Recipient]:
    email = (row.email or "").strip()
    if not email:
        return None
    return Recipient(id=row.id, email=email, first_name=row.first_name, last_name=row.last_name)
