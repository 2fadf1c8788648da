"""Tests for the signup welcome sequence and activity tracking."""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from mailroom.domain.models import EventStatus, NotificationType
from mailroom.lifecycle import LOGIN_EVENT, LifecycleService
from mailroom.notifications.ledger import EventLedger
from mailroom.notifications.models import DeliveryError, NotFoundError, ValidationError
from mailroom.notifications.pipeline import SendPipeline
from mailroom.notifications.templates import TemplateResolver
from mailroom.persistence import PersistenceError, ScheduledNotificationRepository, get_session
from mailroom.scheduler import NotificationScheduler
from tests.helpers import RecordingTransport, seed_user


def build_service(pipeline, clock):
    return LifecycleService(pipeline, NotificationScheduler(pipeline, clock=clock), clock=clock)


@pytest.fixture
def lifecycle(db, pipeline, clock):
    return build_service(pipeline, clock)


def pending_nurture(user_id):
    with get_session() as session:
        return ScheduledNotificationRepository(session).find_pending(user_id, NotificationType.NURTURE_DAY3)


class TestActivity:
    def test_record_and_read_back(self, lifecycle, clock):
        record = lifecycle.record_activity("u-1", LOGIN_EVENT, {"source": "web"})

        assert record.occurred_at == clock()
        assert record.metadata == {"source": "web"}
        assert lifecycle.last_activity("u-1", LOGIN_EVENT) == clock()
        assert lifecycle.last_activity("u-1", "logout") is None

    def test_latest_activity_wins(self, lifecycle, clock):
        lifecycle.record_activity("u-1", LOGIN_EVENT)
        clock.advance(hours=5)
        lifecycle.record_activity("u-1", LOGIN_EVENT)

        assert lifecycle.last_activity("u-1", LOGIN_EVENT) == clock()

    def test_record_activity_is_best_effort(self, pipeline, clock):
        session_factory = MagicMock()
        session_factory.return_value.__enter__.side_effect = PersistenceError("disk full")
        service = LifecycleService(pipeline, MagicMock(), session_factory=session_factory, clock=clock)

        assert service.record_activity("u-1", LOGIN_EVENT) is None


class TestSendWelcome:
    """The signup sequence."""

    def test_full_sequence(self, lifecycle, transport, clock):
        seed_user("u-1", email="ada@example.com", first_name="Ada")

        event = lifecycle.send_welcome("u-1")

        assert event.status == EventStatus.SENT
        assert event.notification_type == NotificationType.WELCOME
        assert transport.calls[0]["subject"] == "Welcome to RideShare Tahoe, Ada"
        assert lifecycle.last_activity("u-1", LOGIN_EVENT) == clock()

        nurture = pending_nurture("u-1")
        assert len(nurture) == 1
        assert nurture[0].run_after == clock() + timedelta(days=3)

    def test_repeat_call_sends_and_schedules_once(self, lifecycle, transport):
        seed_user("u-1", email="ada@example.com")

        first = lifecycle.send_welcome("u-1")
        second = lifecycle.send_welcome("u-1")

        assert second.id == first.id
        assert len(transport.calls) == 1
        assert len(pending_nurture("u-1")) == 1

    def test_empty_user_id(self, lifecycle):
        with pytest.raises(ValidationError):
            lifecycle.send_welcome("")

    def test_unknown_user(self, lifecycle, transport):
        with pytest.raises(NotFoundError):
            lifecycle.send_welcome("ghost")

        assert transport.calls == []

    def test_user_without_address(self, lifecycle, transport):
        seed_user("u-1")

        with pytest.raises(NotFoundError, match="missing email"):
            lifecycle.send_welcome("u-1")

        assert transport.calls == []
        assert pending_nurture("u-1") == []

    def test_delivery_failure_skips_nurture(self, db, clock):
        transport = RecordingTransport(fail_times=1)
        pipeline = SendPipeline(EventLedger(clock=clock), TemplateResolver(), transport)
        lifecycle = build_service(pipeline, clock)
        seed_user("u-1", email="ada@example.com")

        with pytest.raises(DeliveryError):
            lifecycle.send_welcome("u-1")
        assert pending_nurture("u-1") == []

        event = lifecycle.send_welcome("u-1")
        assert event.status == EventStatus.SENT
        assert len(pending_nurture("u-1")) == 1
