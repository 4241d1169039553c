"""Domain specific exceptions raised by the transaction retry layer."""

from __future__ import annotations

__all__ = [
    "DatabaseError",
    "RetryLimitExceededError",
    "RetryableDatabaseError",
    "SQLStateError",
    "ScenarioError",
    "TransactionClosedError",
    "TransactionStateError",
]


class DatabaseError(RuntimeError):
    """Base class for transaction orchestration failures."""


class SQLStateError(DatabaseError):
    """Error tagged with the SQLSTATE code reported by the database."""

    def __init__(self, message: str, *, sqlstate: str) -> None:
        super().__init__(message)
        self.sqlstate = sqlstate


class RetryableDatabaseError(SQLStateError):
    """Marker exception used to force a transaction restart from a work function."""

    def __init__(self, message: str = "restart transaction", *, sqlstate: str = "40001") -> None:
        super().__init__(message, sqlstate=sqlstate)


class TransactionStateError(DatabaseError):
    """Raised when a transaction is driven through an illegal lifecycle step."""


class TransactionClosedError(TransactionStateError):
    """Raised when a handle is used after it was committed or rolled back."""


class RetryLimitExceededError(DatabaseError):
    """Raised when a bounded retry policy gives up on a conflicting transaction."""

    def __init__(self, attempts: int, last_error: BaseException | None) -> None:
        super().__init__(
            f"transaction did not commit after {attempts} attempt(s): {last_error!r}"
        )
        self.attempts = attempts
        self.last_error = last_error


class ScenarioError(DatabaseError):
    """Raised when the bank transfer scenario observes an inconsistent state."""
