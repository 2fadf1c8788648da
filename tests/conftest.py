"""Shared fixtures for mailroom tests."""

import pytest

from mailroom.logging.context import clear_log_context
from mailroom.notifications.ledger import EventLedger
from mailroom.notifications.pipeline import SendPipeline
from mailroom.notifications.templates import TemplateResolver
from mailroom.persistence import close_database, init_database
from tests.helpers import FrozenClock, RecordingTransport

ENV_VARS = (
    "SMTP_HOST",
    "SMTP_PORT",
    "SMTP_USER",
    "SMTP_PASS",
    "EMAIL_FROM",
    "SMTP_SENDER_NAME",
    "SUPPORT_EMAIL",
    "APP_URL",
    "LOG_LEVEL",
    "DATABASE_URL",
)


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every mailroom environment variable."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def mock_env_vars(clean_env):
    """Minimal valid environment for configuration loading."""
    clean_env.setenv("SMTP_HOST", "smtp.example.com")
    clean_env.setenv("SMTP_PORT", "587")
    clean_env.setenv("SMTP_USER", "mailer@example.com")
    clean_env.setenv("SMTP_PASS", "secret")
    clean_env.setenv("EMAIL_FROM", "noreply@example.com")
    clean_env.setenv("SUPPORT_EMAIL", "support@example.com")
    clean_env.setenv("APP_URL", "https://app.example.com/")
    return clean_env


@pytest.fixture
def db():
    """Fresh in-memory database for one test."""
    init_database("sqlite:///:memory:")
    yield
    close_database()


@pytest.fixture
def file_db(tmp_path):
    """File-backed database, required when several threads hit the store."""
    init_database(f"sqlite:///{tmp_path / 'mailroom.db'}")
    yield
    close_database()


@pytest.fixture(autouse=True)
def reset_log_context():
    yield
    clear_log_context()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def ledger(clock):
    return EventLedger(clock=clock)


@pytest.fixture
def pipeline(ledger, transport):
    return SendPipeline(ledger, TemplateResolver(app_url="https://app.example.com"), transport)
