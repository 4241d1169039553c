"""Typed, environment driven configuration for the transaction retry layer."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Literal

from pydantic import Field, PositiveFloat, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .classification import DEFAULT_RETRYABLE_SQLSTATES, ErrorClassifier
from .retry import RetryPolicy
from .transactions import TransactionOrchestrator

__all__ = ["IsolationLevel", "TransactionSettings"]

# AUTOCOMMIT is excluded; every attempt must run inside one transaction.
IsolationLevel = Literal["SERIALIZABLE", "REPEATABLE READ", "READ COMMITTED"]


class TransactionSettings(BaseSettings):
    """Connection, isolation and retry settings.

    Values are read from ``TXRETRY_``-prefixed environment variables; nested
    retry options use a double underscore, e.g. ``TXRETRY_RETRY__MAX_ATTEMPTS=10``.
    """

    model_config = SettingsConfigDict(
        env_prefix="TXRETRY_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    dsn: str = Field(
        "postgresql+psycopg://postgres@localhost:5432/postgres",
        description="SQLAlchemy URL of the database the transactions run against.",
    )
    application_name: str = Field(
        "txretry",
        min_length=1,
        description="Identifier visible in database monitoring views for tracking client activity.",
    )
    connect_timeout_seconds: PositiveFloat = Field(
        5.0,
        description="Timeout, in seconds, for establishing new database connections.",
    )
    isolation_level: IsolationLevel = Field(
        "SERIALIZABLE",
        description="Isolation level applied to every connection checked out by the engine.",
    )
    retryable_sqlstates: tuple[str, ...] = Field(
        tuple(sorted(DEFAULT_RETRYABLE_SQLSTATES)),
        description="SQLSTATE codes that restart the whole transaction.",
    )
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    echo_statements: bool = Field(
        False,
        description="Enable SQLAlchemy statement logging.",
    )
    log_level: str = "INFO"
    log_json: bool = True

    @field_validator("retryable_sqlstates")
    @classmethod
    def _validate_codes(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        if not value:
            raise ValueError("at least one retryable SQLSTATE code is required")
        # Raises ValueError for malformed codes.
        return tuple(sorted(ErrorClassifier(value).retryable_sqlstates))

    def build_classifier(self) -> ErrorClassifier:
        return ErrorClassifier(self.retryable_sqlstates)

    def build_orchestrator(
        self,
        *,
        logger: logging.Logger | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> TransactionOrchestrator:
        return TransactionOrchestrator(
            policy=self.retry,
            classifier=self.build_classifier(),
            logger=logger,
            sleep=sleep,
        )
