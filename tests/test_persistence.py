"""Unit tests for persistence layer."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import text

from mailroom.domain.models import EventStatus, NotificationType
from mailroom.persistence import (
    ActivityRepository,
    DatabaseConnectionError,
    DataIntegrityError,
    NotificationEventRepository,
    RecipientRepository,
    RecordNotFoundError,
    ScheduledNotificationRepository,
    close_database,
    get_session,
    init_database,
)
from mailroom.persistence.database import _redact_url
from mailroom.persistence.schema import NotificationEventModel, format_datetime
from tests.helpers import seed_user

NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def create_event(repo, user_id="u-1", notification_type=NotificationType.WELCOME, created_at=NOW, **kwargs):
    return repo.create(
        user_id=user_id,
        notification_type=notification_type,
        recipient_address=kwargs.pop("recipient_address", "ada@example.com"),
        subject=kwargs.pop("subject", "Hello"),
        payload=kwargs.pop("payload", {"user_name": "Ada"}),
        created_at=created_at,
        **kwargs,
    )


class TestDatabaseInitialization:
    """Tests for database initialization."""

    def test_init_database_creates_file_and_parents(self, tmp_path):
        """A file database and its missing parent directories are created."""
        db_file = tmp_path / "nested" / "dir" / "mailroom.db"

        init_database(f"sqlite:///{db_file}")
        try:
            assert db_file.exists()
        finally:
            close_database()

    def test_init_database_invalid_url_raises_error(self):
        """Empty or missing URLs are rejected."""
        with pytest.raises(DatabaseConnectionError):
            init_database("")
        with pytest.raises(DatabaseConnectionError):
            init_database(None)

    def test_schema_creation_is_idempotent(self, tmp_path):
        """Initializing twice keeps every table."""
        db_url = f"sqlite:///{tmp_path / 'mailroom.db'}"
        init_database(db_url)
        init_database(db_url)

        try:
            with get_session() as session:
                result = session.execute(text("SELECT name FROM sqlite_master WHERE type='table'"))
                tables = {row[0] for row in result.fetchall()}
        finally:
            close_database()

        assert {
            "notification_events",
            "scheduled_notifications",
            "user_activity",
            "profiles",
            "user_private_info",
        } <= tables

    def test_redact_url(self):
        """Passwords are hidden from logged URLs."""
        assert _redact_url("postgresql://app:secret@db:5432/mail") == "postgresql://app:***@db:5432/mail"
        assert _redact_url("sqlite:///./data/mailroom.db") == "sqlite:///./data/mailroom.db"


class TestSessionManagement:
    """Tests for session management."""

    def test_session_rolls_back_on_exception(self, db):
        """Nothing is committed when the block raises."""
        with pytest.raises(ValueError):
            with get_session() as session:
                create_event(NotificationEventRepository(session))
                raise ValueError("boom")

        with get_session() as session:
            assert session.query(NotificationEventModel).count() == 0

    def test_commit_time_constraint_violation_is_translated(self, db):
        """An integrity error at commit surfaces as DataIntegrityError."""
        with pytest.raises(DataIntegrityError):
            with get_session() as session:
                session.add(NotificationEventModel(
                    user_id="u-1", notification_type="welcome", status="queued",
                    recipient_address="a@example.com", payload={},
                    created_at=format_datetime(NOW), dedupe_key="k",
                ))
                session.add(NotificationEventModel(
                    user_id="u-1", notification_type="welcome", status="queued",
                    recipient_address="a@example.com", payload={},
                    created_at=format_datetime(NOW), dedupe_key="k",
                ))

    def test_get_session_without_init_raises_error(self):
        """Sessions require an initialized database."""
        close_database()

        with pytest.raises(DatabaseConnectionError, match="Database not initialized"):
            with get_session():
                pass


class TestNotificationEventRepository:
    """Tests for ledger rows."""

    def test_create_and_get(self, db):
        """Created events round-trip as queued domain models."""
        with get_session() as session:
            event = create_event(NotificationEventRepository(session))

        with get_session() as session:
            loaded = NotificationEventRepository(session).get(event.id)

        assert loaded.status == EventStatus.QUEUED
        assert loaded.notification_type == NotificationType.WELCOME
        assert loaded.payload == {"user_name": "Ada"}
        assert loaded.created_at == NOW

    def test_duplicate_dedupe_key_rejected(self, db):
        """A second live row with the same key raises DataIntegrityError."""
        with get_session() as session:
            create_event(NotificationEventRepository(session), dedupe_key="u-1:welcome")

        with pytest.raises(DataIntegrityError):
            with get_session() as session:
                create_event(NotificationEventRepository(session), dedupe_key="u-1:welcome")

    def test_transition_is_once_only(self, db):
        """A terminal event is never transitioned again."""
        with get_session() as session:
            event = create_event(NotificationEventRepository(session))

        with get_session() as session:
            repo = NotificationEventRepository(session)
            assert repo.transition(event.id, EventStatus.SENT, external_message_id="<m1>") is True
            assert repo.transition(event.id, EventStatus.FAILED, error="late") is False
            loaded = repo.get(event.id)

        assert loaded.status == EventStatus.SENT
        assert loaded.external_message_id == "<m1>"
        assert loaded.error is None

    def test_failed_transition_releases_dedupe_key(self, db):
        """After marking failed, the same key can be inserted again."""
        with get_session() as session:
            event = create_event(NotificationEventRepository(session), dedupe_key="u-1:welcome")
        with get_session() as session:
            NotificationEventRepository(session).transition(event.id, EventStatus.FAILED, error="smtp down")
        with get_session() as session:
            retry = create_event(NotificationEventRepository(session), dedupe_key="u-1:welcome")

        assert retry.id != event.id

    def test_transition_missing_event(self, db):
        """Unknown ids raise RecordNotFoundError."""
        with pytest.raises(RecordNotFoundError):
            with get_session() as session:
                NotificationEventRepository(session).transition(999, EventStatus.SENT)

    def test_find_active_ignores_failed(self, db):
        """Only queued or sent events count as active."""
        with get_session() as session:
            repo = NotificationEventRepository(session)
            failed = create_event(repo)
            repo.transition(failed.id, EventStatus.FAILED, error="x")
            assert repo.find_active("u-1", NotificationType.WELCOME) is None

            live = create_event(repo, created_at=NOW + timedelta(minutes=1))
            assert repo.find_active("u-1", NotificationType.WELCOME).id == live.id

    def test_exists_since(self, db):
        """Only events with the status at or after the cutoff match."""
        with get_session() as session:
            repo = NotificationEventRepository(session)
            event = create_event(repo, notification_type=NotificationType.REENGAGE)
            repo.transition(event.id, EventStatus.SENT)

            assert repo.exists_since("u-1", NotificationType.REENGAGE, EventStatus.SENT, NOW)
            assert not repo.exists_since(
                "u-1", NotificationType.REENGAGE, EventStatus.SENT, NOW + timedelta(seconds=1)
            )
            assert not repo.exists_since("u-1", NotificationType.REENGAGE, EventStatus.FAILED, NOW)

    def test_list_events_filters_and_paginates(self, db):
        """Events are listed newest first with filters and offsets."""
        with get_session() as session:
            repo = NotificationEventRepository(session)
            for i in range(5):
                create_event(
                    repo,
                    user_id=f"u-{i % 2}",
                    notification_type=NotificationType.NEW_MESSAGE,
                    created_at=NOW + timedelta(minutes=i),
                )
            create_event(repo, notification_type=NotificationType.REENGAGE)

        with get_session() as session:
            repo = NotificationEventRepository(session)
            newest = repo.list_events(limit=2)
            messages_u0 = repo.list_events(notification_type=NotificationType.NEW_MESSAGE, user_id="u-0")
            second_page = repo.list_events(notification_type=NotificationType.NEW_MESSAGE, offset=2, limit=2)

        assert [e.created_at for e in newest] == [NOW + timedelta(minutes=4), NOW + timedelta(minutes=3)]
        assert len(messages_u0) == 3
        assert [e.created_at for e in second_page] == [NOW + timedelta(minutes=2), NOW + timedelta(minutes=1)]


class TestScheduledNotificationRepository:
    """Tests for deferred intents."""

    def test_get_due_orders_and_limits(self, db):
        """Due rows come back oldest first, capped by the limit."""
        with get_session() as session:
            repo = ScheduledNotificationRepository(session)
            late = repo.add("u-1", NotificationType.NURTURE_DAY3, NOW - timedelta(hours=1), {}, NOW)
            early = repo.add("u-2", NotificationType.NURTURE_DAY3, NOW - timedelta(hours=2), {}, NOW)
            repo.add("u-3", NotificationType.NURTURE_DAY3, NOW + timedelta(hours=1), {}, NOW)

        with get_session() as session:
            repo = ScheduledNotificationRepository(session)
            due = repo.get_due(NOW)
            capped = repo.get_due(NOW, limit=1)

        assert [s.id for s in due] == [early.id, late.id]
        assert [s.id for s in capped] == [early.id]

    def test_find_pending_and_delete(self, db):
        """Deleted rows are no longer pending; deleting twice reports False."""
        with get_session() as session:
            row = ScheduledNotificationRepository(session).add(
                "u-1", NotificationType.MEETING_REMINDER, NOW, {"meeting_id": "m-1"}, NOW
            )

        with get_session() as session:
            repo = ScheduledNotificationRepository(session)
            assert [s.payload for s in repo.find_pending("u-1", NotificationType.MEETING_REMINDER)] == [
                {"meeting_id": "m-1"}
            ]
            assert repo.delete(row.id) is True
            assert repo.delete(row.id) is False
            assert repo.find_pending("u-1", NotificationType.MEETING_REMINDER) == []


class TestActivityRepository:
    """Tests for the activity log."""

    def test_last_occurrence(self, db):
        """The most recent record of the event is returned."""
        with get_session() as session:
            repo = ActivityRepository(session)
            repo.append("u-1", "login", NOW - timedelta(days=3))
            repo.append("u-1", "login", NOW - timedelta(days=1), metadata={"source": "web"})
            repo.append("u-1", "logout", NOW)

        with get_session() as session:
            last = ActivityRepository(session).last_occurrence("u-1", "login")

        assert last.occurred_at == NOW - timedelta(days=1)
        assert last.metadata == {"source": "web"}

    def test_users_inactive_since_uses_latest_activity(self, db):
        """A user with any login after the cutoff is not inactive."""
        cutoff = NOW - timedelta(days=7)
        with get_session() as session:
            repo = ActivityRepository(session)
            repo.append("idle", "login", NOW - timedelta(days=10))
            repo.append("busy", "login", NOW - timedelta(days=10))
            repo.append("busy", "login", NOW - timedelta(days=1))
            repo.append("never-logged-in", "signup", NOW - timedelta(days=30))

        with get_session() as session:
            assert ActivityRepository(session).users_inactive_since("login", cutoff) == ["idle"]


class TestRecipientRepository:
    """Tests for recipient lookups."""

    def test_get_flattens_private_info(self, db):
        """Profile and address come back as one flat recipient."""
        seed_user("u-1", email="ada@example.com", first_name="Ada", last_name="Lovelace")

        with get_session() as session:
            recipient = RecipientRepository(session).get("u-1")

        assert recipient.email == "ada@example.com"
        assert recipient.full_name == "Ada Lovelace"

    def test_get_without_address(self, db):
        """Users without an address or profile resolve to None."""
        seed_user("no-info")
        seed_user("blank", email="  ")

        with get_session() as session:
            repo = RecipientRepository(session)
            assert repo.get("no-info") is None
            assert repo.get("blank") is None
            assert repo.get("missing") is None
            assert repo.get_email("missing") is None

    def test_list_addressable_excludes_banned_and_empty(self, db):
        """Banned users and users without an address are skipped."""
        seed_user("a", email="a@example.com")
        seed_user("b", email="b@example.com", is_banned=True)
        seed_user("c", email="")
        seed_user("d")
        seed_user("e", email="e@example.com")

        with get_session() as session:
            repo = RecipientRepository(session)
            assert [r.id for r in repo.list_addressable()] == ["a", "e"]
            assert [r.id for r in repo.list_addressable(exclude_banned=False)] == ["a", "b", "e"]
