"""Persistence layer for the notification store.

Public API:
    # Database initialization and session management
    - init_database(database_url: str) -> None
    - get_session() -> ContextManager[Session]
    - close_database() -> None
    - get_engine() -> Engine

    # Repository classes
    - NotificationEventRepository: ledger rows
    - ScheduledNotificationRepository: deferred intents
    - ActivityRepository: append-only activity log
    - RecipientRepository: profile + delivery address lookups

    # Exceptions
    - PersistenceError: Base exception for all persistence errors
    - DatabaseConnectionError: Database connection/initialization failures
    - RecordNotFoundError: Required record not found
    - DataIntegrityError: Constraint violations

Example usage:
    >>> from mailroom.persistence import init_database, get_session, RecipientRepository
    >>> init_database("sqlite:///./data/mailroom.db")
    >>> with get_session() as session:
    ...     recipient = RecipientRepository(session).get("user-1")
"""

from .database import close_database, get_engine, get_session, init_database
from .exceptions import (
    DatabaseConnectionError,
    DataIntegrityError,
    PersistenceError,
    RecordNotFoundError,
)
from .repositories import (
    ActivityRepository,
    NotificationEventRepository,
    RecipientRepository,
    ScheduledNotificationRepository,
)

__all__ = [
    # Database functions
    "init_database",
    "get_session",
    "close_database",
    "get_engine",
    # Repositories
    "NotificationEventRepository",
    "ScheduledNotificationRepository",
    "ActivityRepository",
    "RecipientRepository",
    # Exceptions
    "PersistenceError",
    "DatabaseConnectionError",
    "RecordNotFoundError",
    "DataIntegrityError",
]
