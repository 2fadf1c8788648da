"""Inactivity-triggered re-engagement campaign.

A user becomes a candidate once their most recent engagement activity
(``login`` by default) is at least ``inactivity_days`` old. A candidate is
emailed unless a re-engagement email was already sent to them within the
last ``cooldown_days``.
"""

from datetime import datetime, timedelta
from typing import Callable, ContextManager, List, Optional

from sqlalchemy.orm import Session

from mailroom.config.models import ReengageConfig
from mailroom.domain.models import EventStatus, NotificationType
from mailroom.logging import get_logger
from mailroom.logging.context import log_context
from mailroom.notifications.ledger import EventLedger
from mailroom.notifications.models import NotificationError
from mailroom.notifications.pipeline import SendPipeline
from mailroom.persistence import (
    ActivityRepository,
    PersistenceError,
    RecipientRepository,
    get_session,
)
from mailroom.utils.timestamps import days_between, utc_now

from .models import ReengageError, ReengageResult

logger = get_logger(__name__, component="reengage")


class ReengagementEngine:
    """Selects inactive users and sends them a win-back email."""

    def __init__(
        self,
        pipeline: SendPipeline,
        ledger: EventLedger,
        config: Optional[ReengageConfig] = None,
        session_factory: Callable[[], ContextManager[Session]] = get_session,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize the engine.

        Args:
            pipeline: Send pipeline for the re-engagement emails
            ledger: Ledger consulted for the cooldown check
            config: Thresholds (defaults: 7 days inactivity, 21 days cooldown)
            session_factory: Context manager producing store sessions
            clock: Source of the current UTC time
        """
        self.pipeline = pipeline
        self.ledger = ledger
        self.config = config or ReengageConfig()
        self.session_factory = session_factory
        self.clock = clock

    @property
    def inactivity_days(self) -> int:
        return self.config.inactivity_days

    @property
    def cooldown_days(self) -> int:
        return self.config.cooldown_days

    def select_candidates(self) -> List[str]:
        """Return users whose last engagement is at least ``inactivity_days`` old.

        Users who never recorded the engagement activity are not candidates.

        Raises:
            PersistenceError: If activity cannot be read
        """
        cutoff = self.clock() - timedelta(days=self.inactivity_days)
        with self.session_factory() as session:
            return ActivityRepository(session).users_inactive_since(self.config.activity_event, cutoff)

    def is_inactive(self, user_id: str) -> bool:
        """Return True if the user's last engagement is at least ``inactivity_days`` old."""
        with self.session_factory() as session:
            last = ActivityRepository(session).last_occurrence(user_id, self.config.activity_event)
        if last is None:
            return False
        return days_between(last.occurred_at, self.clock()) >= self.inactivity_days

    def in_cooldown(self, user_id: str) -> bool:
        """Return True if a re-engagement email was sent or queued within ``cooldown_days``.

        A queued event counts so that an overlapping run does not send twice.
        """
        since = self.clock() - timedelta(days=self.cooldown_days)
        return any(
            self.ledger.has_recent_event(user_id, NotificationType.REENGAGE, status, since)
            for status in (EventStatus.SENT, EventStatus.QUEUED)
        )

    def should_send(self, user_id: str) -> bool:
        """Return True if the user is inactive and outside the cooldown window.

        Raises:
            PersistenceError: If the store cannot be read
        """
        return self.is_inactive(user_id) and not self.in_cooldown(user_id)

    def run(self) -> ReengageResult:
        """Evaluate every candidate and send where the policy allows.

        Per-user failures are collected in the result and never abort the run.

        Returns:
            ReengageResult with processed/sent/skipped counts and errors

        Raises:
            PersistenceError: If candidates cannot be selected
        """
        candidates = self.select_candidates()
        logger.info(
            f"Re-engagement run found {len(candidates)} inactive users",
            extra={"event": "reengage.run.started", "candidate_count": len(candidates)},
        )

        result = ReengageResult()
        for user_id in candidates:
            result.processed += 1
            with log_context(user_id=user_id):
                try:
                    self._process_candidate(user_id, result)
                except (NotificationError, PersistenceError) as e:
                    logger.error(
                        f"Re-engagement for user {user_id} failed: {e}",
                        extra={"event": "reengage.user.failed", "error_type": type(e).__name__},
                    )
                    result.errors.append(ReengageError(user_id=user_id, message=str(e)))

        logger.info(
            f"Re-engagement run complete: {result.sent} sent, {result.skipped} skipped, "
            f"{len(result.errors)} errors",
            extra={
                "event": "reengage.run.completed",
                "processed": result.processed,
                "sent": result.sent,
                "skipped": result.skipped,
                "error_count": len(result.errors),
            },
        )
        return result

    def _process_candidate(self, user_id: str, result: ReengageResult) -> None:
        if self.in_cooldown(user_id):
            logger.info(
                f"Skipping user {user_id}: re-engaged within {self.cooldown_days} days",
                extra={"event": "reengage.user.cooldown"},
            )
            result.skipped += 1
            return

        with self.session_factory() as session:
            recipient = RecipientRepository(session).get(user_id)
            last = ActivityRepository(session).last_occurrence(user_id, self.config.activity_event)

        if recipient is None:
            message = f"No email address found for user {user_id}"
            logger.warning(message, extra={"event": "reengage.user.no_address"})
            result.errors.append(ReengageError(user_id=user_id, message=message))
            return

        payload = {"user_name": recipient.first_name or ""}
        if last is not None:
            payload["days_inactive"] = days_between(last.occurred_at, self.clock())

        self.pipeline.send(user_id, recipient.email, NotificationType.REENGAGE, payload=payload)
        result.sent += 1
