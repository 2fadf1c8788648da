"""Persistence layer exceptions.

All persistence exceptions inherit from PersistenceError so batch callers can
tell a store outage apart from a per-recipient delivery problem.
"""


class PersistenceError(Exception):
    """Base exception for all persistence layer errors (store unreachable or failing)."""

    pass


class DatabaseConnectionError(PersistenceError):
    """Raised when the database cannot be initialized or reached.

    Examples:
    - Invalid database URL
    - init_database() was never called
    - Database file not accessible
    """

    pass


class RecordNotFoundError(PersistenceError):
    """Raised when an operation targets a row id that does not exist.

    Optional lookups return None instead of raising this.
    """

    pass


class DataIntegrityError(PersistenceError):
    """Raised on constraint violations.

    The ledger relies on this for single-shot notifications: a second queued
    event for the same user and type violates the unique dedupe key.
    """

    pass
