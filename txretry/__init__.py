"""Transaction retry orchestration for optimistic-concurrency SQL databases."""

from .adapters import DBAPITransactionSource, SqlAlchemyTransactionSource
from .classification import (
    DEADLOCK_DETECTED,
    DEFAULT_RETRYABLE_SQLSTATES,
    SERIALIZATION_FAILURE,
    AttemptOutcome,
    ErrorClassifier,
    classify_sqlstate,
    extract_sqlstate,
    is_retryable,
)
from .config import TransactionSettings
from .engine import create_engine_from_settings
from .exceptions import (
    DatabaseError,
    RetryableDatabaseError,
    RetryLimitExceededError,
    ScenarioError,
    SQLStateError,
    TransactionClosedError,
    TransactionStateError,
)
from .naming import ScratchNameGenerator
from .retry import RetryPolicy
from .scenarios import BankTransferScenario, TransferOutcome
from .session import SessionManager
from .transactions import (
    TransactionHandle,
    TransactionOrchestrator,
    TransactionReport,
    TransactionSource,
    TransactionState,
    execute_tx,
)

__all__ = [
    "AttemptOutcome",
    "BankTransferScenario",
    "DBAPITransactionSource",
    "DEADLOCK_DETECTED",
    "DEFAULT_RETRYABLE_SQLSTATES",
    "DatabaseError",
    "ErrorClassifier",
    "RetryLimitExceededError",
    "RetryPolicy",
    "RetryableDatabaseError",
    "SERIALIZATION_FAILURE",
    "SQLStateError",
    "ScenarioError",
    "ScratchNameGenerator",
    "SessionManager",
    "SqlAlchemyTransactionSource",
    "TransactionClosedError",
    "TransactionHandle",
    "TransactionOrchestrator",
    "TransactionReport",
    "TransactionSettings",
    "TransactionSource",
    "TransactionState",
    "TransactionStateError",
    "TransferOutcome",
    "classify_sqlstate",
    "create_engine_from_settings",
    "execute_tx",
    "extract_sqlstate",
    "is_retryable",
]

__version__ = "0.1.0"
