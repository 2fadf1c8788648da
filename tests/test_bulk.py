"""Tests for bulk announcement dispatch."""

from unittest.mock import Mock

import pytest

from mailroom.bulk import (
    BulkContent,
    BulkDispatcher,
    coerce_int,
    validate_batch_size,
    validate_delay_ms,
)
from mailroom.config.models import BulkConfig
from mailroom.domain.models import Recipient
from mailroom.notifications.models import NotFoundError, ValidationError
from tests.helpers import RecordingTransport, seed_user

CONTENT = BulkContent(subject="Season opener", html="<p>Hi {{first_name}}</p>")


def recipients(count):
    return [Recipient(id=f"u-{i}", email=f"user{i}@example.com") for i in range(1, count + 1)]


@pytest.fixture
def sleep():
    return Mock()


def make_dispatcher(transport, sleep, **config):
    return BulkDispatcher(transport, BulkConfig(**config), sleep=sleep)


class TestCoercion:
    """Lenient numeric parsing of pacing parameters."""

    @pytest.mark.parametrize(
        "value,expected",
        [(10, 10), ("10", 10), (" 25 ", 25), (2.7, 2), ("2.7", 2), ("12ms", 12), ("-3", -3)],
    )
    def test_coerce_int(self, value, expected):
        assert coerce_int(value) == expected

    @pytest.mark.parametrize("value", ["", "  ", "abc", "inf", float("nan"), True, None, [5]])
    def test_coerce_int_rejects(self, value):
        assert coerce_int(value) is None

    def test_batch_size_defaults(self):
        assert validate_batch_size(None) == 50
        assert validate_batch_size("", default=20) == 20

    @pytest.mark.parametrize("value", [0, 101, "abc", "0.5", False])
    def test_batch_size_out_of_range(self, value):
        with pytest.raises(ValidationError, match="Batch size must be between 1 and 100"):
            validate_batch_size(value)

    def test_delay_accepts_bounds(self):
        assert validate_delay_ms(None, default=250) == 250
        assert validate_delay_ms(0) == 0
        assert validate_delay_ms("10000") == 10000

    @pytest.mark.parametrize("value", ["", -1, 10001, "soon"])
    def test_delay_out_of_range(self, value):
        with pytest.raises(ValidationError, match="Delay must be between 0 and 10000 milliseconds"):
            validate_delay_ms(value)


class TestDispatchValidation:
    """Input checks happen before anything is sent."""

    def test_missing_content(self, sleep):
        transport = RecordingTransport()

        with pytest.raises(ValidationError, match="Subject and HTML content are required"):
            make_dispatcher(transport, sleep).dispatch(BulkContent(subject=" ", html="<p>x</p>"), recipients(1))
        with pytest.raises(ValidationError, match="Subject and HTML content are required"):
            make_dispatcher(transport, sleep).dispatch(BulkContent(subject="Hi", html=""), recipients(1))

        assert transport.calls == []

    def test_delay_is_checked_first(self, sleep):
        with pytest.raises(ValidationError, match="Delay"):
            make_dispatcher(RecordingTransport(), sleep).dispatch(
                BulkContent(subject="", html=""), recipients(1), delay_ms=20000
            )

    def test_malformed_recipient_dict(self, sleep):
        transport = RecordingTransport()

        with pytest.raises(ValidationError, match="Invalid recipient"):
            make_dispatcher(transport, sleep).dispatch(
                CONTENT, [{"id": "u-1", "email": "one@example.com"}, {"id": "u-2"}]
            )

        assert transport.calls == []

    def test_dict_recipients_accepted(self, sleep):
        transport = RecordingTransport()

        result = make_dispatcher(transport, sleep).dispatch(
            CONTENT, [{"id": "u-1", "email": "one@example.com", "first_name": "Uma"}]
        )

        assert result.successful == 1
        assert len(transport.calls) == 1

    def test_no_recipients(self, sleep):
        with pytest.raises(NotFoundError, match="No users with email addresses found"):
            make_dispatcher(RecordingTransport(), sleep).dispatch(CONTENT, [])


class TestDispatch:
    """Batching, pacing, retries and aggregation."""

    def test_mixed_outcome(self, sleep):
        """Five recipients in batches of two with the third failing permanently."""
        people = recipients(5)
        transport = RecordingTransport(fail_addresses={people[2].email})

        result = make_dispatcher(transport, sleep).dispatch(CONTENT, people, batch_size=2, delay_ms=0)

        assert result.to_dict() == {
            "total_users": 5,
            "successful": 4,
            "failed": 1,
            "errors": [{"email": "user3@example.com", "error": "Simulated failure for user3@example.com"}],
        }
        assert result.batches == [2, 2, 1]
        assert len(transport.calls_to("user3@example.com")) == 3
        assert len(transport.calls) == 7

    def test_retry_bound_and_backoff(self, sleep):
        transport = RecordingTransport(fail_addresses={"user1@example.com"})

        result = make_dispatcher(transport, sleep).dispatch(CONTENT, recipients(1))

        assert result.failed == 1
        assert len(transport.calls) == 3
        assert [c.args[0] for c in sleep.call_args_list] == [1.0, 2.0]

    def test_recovers_on_a_later_attempt(self, sleep):
        transport = RecordingTransport(fail_times=2)

        result = make_dispatcher(transport, sleep, retry_base_delay_ms=500).dispatch(CONTENT, recipients(1))

        assert result.successful == 1
        assert result.errors == []
        assert [c.args[0] for c in sleep.call_args_list] == [0.5, 1.0]

    def test_batches_are_paced(self, sleep):
        transport = RecordingTransport()

        result = make_dispatcher(transport, sleep).dispatch(CONTENT, recipients(7), batch_size="3", delay_ms="250")

        assert result.batches == [3, 3, 1]
        assert result.successful == 7
        assert [c.args[0] for c in sleep.call_args_list] == [0.25, 0.25]

    def test_single_batch_does_not_sleep(self, sleep):
        make_dispatcher(RecordingTransport(), sleep).dispatch(CONTENT, recipients(3), batch_size=10)

        sleep.assert_not_called()

    def test_config_defaults_apply(self, sleep):
        result = make_dispatcher(RecordingTransport(), sleep, default_batch_size=2, default_delay_ms=40).dispatch(
            CONTENT, recipients(3)
        )

        assert result.batches == [2, 1]
        sleep.assert_called_once_with(0.04)

    def test_placeholders_are_interpolated(self, sleep):
        transport = RecordingTransport()
        content = BulkContent(
            subject="Hello",
            html="<p>Hi {{first_name}} {{last_name}}</p>",
            text="Sent to {{email}} for {{first_name}}",
        )

        make_dispatcher(transport, sleep).dispatch(
            content, [{"id": "u-1", "email": "ada@example.com", "first_name": "Ada"}]
        )

        call = transport.calls[0]
        assert call["html"] == "<p>Hi Ada </p>"
        assert call["text"] == "Sent to ada@example.com for Ada"
        assert call["subject"] == "Hello"

    def test_dispatch_to_all_skips_banned_and_unaddressable(self, db, sleep):
        seed_user("a", email="a@example.com", first_name="Ann")
        seed_user("b", email="b@example.com", is_banned=True)
        seed_user("c", email="")
        seed_user("d")
        transport = RecordingTransport()

        result = make_dispatcher(transport, sleep).dispatch_to_all(CONTENT)

        assert result.total_users == 1
        assert [call["to"] for call in transport.calls] == ["a@example.com"]
        assert transport.calls[0]["html"] == "<p>Hi Ann</p>"

    def test_dispatch_to_all_with_nobody(self, db, sleep):
        seed_user("d")

        with pytest.raises(NotFoundError):
            make_dispatcher(RecordingTransport(), sleep).dispatch_to_all(CONTENT)
