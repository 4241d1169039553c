"""Tests for the retry policy configuration."""

from __future__ import annotations

import logging

import pytest
from pydantic import ValidationError
from tenacity import Retrying, stop_never, wait_none

from txretry.retry import RetryPolicy

_LOGGER = logging.getLogger("txretry.tests")


def _always(error: BaseException) -> bool:
    return True


def test_default_policy_is_unbounded_with_small_backoff() -> None:
    policy = RetryPolicy()

    assert policy.max_attempts is None
    assert policy.max_elapsed is None
    assert policy.bounded is False
    assert 0 < policy.initial_backoff <= policy.max_backoff

    retrying = policy.build(logger=_LOGGER, retry=_always)
    assert isinstance(retrying, Retrying)
    assert retrying.stop is stop_never


def test_immediate_policy_does_not_wait() -> None:
    retrying = RetryPolicy.immediate().build(logger=_LOGGER, retry=_always)

    assert isinstance(retrying.wait, wait_none)


def test_bounded_policy_stops_after_max_attempts() -> None:
    calls = 0

    def operation() -> None:
        nonlocal calls
        calls += 1
        raise RuntimeError("conflict")

    retrying = RetryPolicy.immediate(max_attempts=4).build(
        logger=_LOGGER, retry=_always, sleep=lambda _: None
    )
    with pytest.raises(Exception):
        retrying(operation)

    assert calls == 4
    assert RetryPolicy(max_attempts=4).bounded is True
    assert RetryPolicy(max_elapsed=1.5).bounded is True


def test_non_retryable_errors_are_raised_unchanged() -> None:
    error = KeyError("fatal")

    def operation() -> None:
        raise error

    retrying = RetryPolicy.immediate().build(logger=_LOGGER, retry=lambda exc: False)
    with pytest.raises(KeyError) as excinfo:
        retrying(operation)

    assert excinfo.value is error


def test_retry_sleeps_are_logged(caplog: pytest.LogCaptureFixture) -> None:
    attempts = 0

    def operation() -> str:
        nonlocal attempts
        attempts += 1
        if attempts < 2:
            raise RuntimeError("conflict")
        return "ok"

    retrying = RetryPolicy().build(logger=_LOGGER, retry=_always, sleep=lambda _: None)
    with caplog.at_level(logging.WARNING, logger="txretry.tests"):
        assert retrying(operation) == "ok"

    assert any("Retrying" in record.getMessage() for record in caplog.records)


def test_policy_validation() -> None:
    with pytest.raises(ValidationError):
        RetryPolicy(initial_backoff=2.0, max_backoff=1.0)
    with pytest.raises(ValidationError):
        RetryPolicy(max_attempts=0)
    with pytest.raises(ValidationError):
        RetryPolicy(initial_backoff=-0.1)
