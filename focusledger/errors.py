"""Exception hierarchy for FocusLedger.

ValidationError   malformed session input; rejected before any write.
SchemaError       DDL, seed or migration failure; fatal at startup.
ConsistencyError  a derived aggregate disagrees with the session table.
StorageIOError    the underlying SQLite file or driver failed.
"""

from __future__ import annotations


class FocusLedgerError(Exception):
    """Base class for every error raised by the ledger."""


class ValidationError(FocusLedgerError, ValueError):
    """A session (or session edit) was rejected before touching the store."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class SchemaError(FocusLedgerError):
    """The schema could not be created, seeded or migrated."""


class ConsistencyError(FocusLedgerError):
    """Derived state (daily stats, streak) violates an invariant."""

    def __init__(self, message: str, problems: list[str] | None = None) -> None:
        super().__init__(message)
        self.problems = problems or []


class StorageIOError(FocusLedgerError):
    """A database operation failed; the transaction was rolled back."""
