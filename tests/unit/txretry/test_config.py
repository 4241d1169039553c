"""Tests for environment driven settings."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from txretry.classification import ErrorClassifier
from txretry.config import TransactionSettings
from txretry.engine import _build_connect_args, create_engine_from_settings
from txretry.transactions import TransactionOrchestrator


def test_defaults_target_serializable_isolation_and_restart_code(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    for key in ("TXRETRY_DSN", "TXRETRY_ISOLATION_LEVEL", "TXRETRY_RETRYABLE_SQLSTATES"):
        monkeypatch.delenv(key, raising=False)

    settings = TransactionSettings()

    assert settings.isolation_level == "SERIALIZABLE"
    assert settings.retryable_sqlstates == ("40001",)
    assert settings.retry.max_attempts is None


def test_environment_overrides_nested_retry_policy(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TXRETRY_DSN", "sqlite://")
    monkeypatch.setenv("TXRETRY_RETRY__MAX_ATTEMPTS", "7")
    monkeypatch.setenv("TXRETRY_RETRYABLE_SQLSTATES", '["40001", "40p01"]')

    settings = TransactionSettings()

    assert settings.dsn == "sqlite://"
    assert settings.retry.max_attempts == 7
    assert settings.retryable_sqlstates == ("40001", "40P01")


def test_invalid_codes_are_rejected() -> None:
    with pytest.raises(ValidationError):
        TransactionSettings(retryable_sqlstates=("restart",))
    with pytest.raises(ValidationError):
        TransactionSettings(retryable_sqlstates=())


def test_build_orchestrator_uses_configured_policy_and_codes() -> None:
    settings = TransactionSettings(
        retryable_sqlstates=("40001", "40P01"),
        retry={"max_attempts": 3, "initial_backoff": 0.0, "max_jitter": 0.0},
    )

    orchestrator = settings.build_orchestrator()

    assert isinstance(orchestrator, TransactionOrchestrator)
    assert orchestrator.policy.max_attempts == 3
    assert isinstance(orchestrator.classifier, ErrorClassifier)
    assert orchestrator.classifier.retryable_sqlstates == frozenset({"40001", "40P01"})


def test_engine_factory_applies_isolation_level() -> None:
    settings = TransactionSettings(dsn="sqlite://", isolation_level="SERIALIZABLE")

    engine = create_engine_from_settings(settings)
    try:
        with engine.connect() as connection:
            assert connection.get_isolation_level() == "SERIALIZABLE"
    finally:
        engine.dispose()


def test_autocommit_isolation_is_rejected() -> None:
    with pytest.raises(ValidationError):
        TransactionSettings(isolation_level="AUTOCOMMIT")


@pytest.mark.parametrize(
    ("timeout", "expected"),
    [(0.2, 1), (0.5, 1), (1.0, 1), (2.5, 3), (5.0, 5)],
)
def test_postgres_connect_timeout_rounds_up_to_whole_seconds(timeout: float, expected: int) -> None:
    settings = TransactionSettings(
        dsn="postgresql+psycopg://postgres@localhost:5432/postgres",
        connect_timeout_seconds=timeout,
    )

    connect_args = _build_connect_args(settings)

    assert connect_args["connect_timeout"] == expected
    assert connect_args["application_name"] == "txretry"
