"""Tests for SQLSTATE extraction and retry classification."""

from __future__ import annotations

import pytest
from sqlalchemy.exc import OperationalError

from txretry.classification import (
    AttemptOutcome,
    ErrorClassifier,
    classify_sqlstate,
    extract_sqlstate,
    is_retryable,
)
from txretry.exceptions import RetryableDatabaseError, SQLStateError


class Psycopg3Error(Exception):
    def __init__(self, message: str, sqlstate: str | None) -> None:
        super().__init__(message)
        self.sqlstate = sqlstate


class Psycopg2Error(Exception):
    def __init__(self, message: str, pgcode: str | None) -> None:
        super().__init__(message)
        self.pgcode = pgcode


def test_extracts_code_from_psycopg_style_attributes() -> None:
    assert extract_sqlstate(Psycopg3Error("restart", "40001")) == "40001"
    assert extract_sqlstate(Psycopg2Error("restart", "40001")) == "40001"


def test_extracts_code_from_pg8000_response_dictionary() -> None:
    error = Exception({"S": "ERROR", "C": "40001", "M": "could not serialize access"})

    assert extract_sqlstate(error) == "40001"


def test_extracts_code_through_sqlalchemy_wrapper() -> None:
    wrapped = OperationalError("COMMIT", {}, Psycopg3Error("restart transaction", "40001"))

    assert extract_sqlstate(wrapped) == "40001"
    assert is_retryable(wrapped) is True


def test_extracts_code_through_explicit_cause_only() -> None:
    try:
        try:
            raise Psycopg3Error("restart", "40001")
        except Psycopg3Error as inner:
            raise RuntimeError("wrapped") from inner
    except RuntimeError as caused:
        assert extract_sqlstate(caused) == "40001"

    try:
        try:
            raise Psycopg3Error("restart", "40001")
        except Psycopg3Error:
            raise RuntimeError("unrelated failure while handling")
    except RuntimeError as implicit:
        assert extract_sqlstate(implicit) is None


@pytest.mark.parametrize("code", [None, "", "4000", "400011", 40001, "not-a-code"])
def test_malformed_codes_are_ignored(code: object) -> None:
    error = Psycopg3Error("boom", None)
    error.sqlstate = code  # type: ignore[assignment]

    assert extract_sqlstate(error) is None
    assert is_retryable(error) is False


def test_cyclic_cause_chain_terminates() -> None:
    first = RuntimeError("first")
    second = RuntimeError("second")
    first.__cause__ = second
    second.__cause__ = first

    assert extract_sqlstate(first) is None


def test_classify_sqlstate_is_a_pure_mapping() -> None:
    assert classify_sqlstate("40001") is AttemptOutcome.RETRYABLE
    assert classify_sqlstate("23505") is AttemptOutcome.FATAL
    assert classify_sqlstate(None) is AttemptOutcome.FATAL
    assert classify_sqlstate("40P01", {"40P01"}) is AttemptOutcome.RETRYABLE


def test_tagged_errors_are_classified_by_code() -> None:
    assert is_retryable(RetryableDatabaseError()) is True
    assert is_retryable(SQLStateError("unique violation", sqlstate="23505")) is False
    assert is_retryable(ValueError("plain bug")) is False


def test_classifier_normalises_and_validates_codes() -> None:
    classifier = ErrorClassifier(["40001", "40p01"])

    assert classifier.retryable_sqlstates == frozenset({"40001", "40P01"})
    assert classifier.classify(None) is AttemptOutcome.SUCCESS
    assert classifier.is_retryable(Psycopg3Error("deadlock", "40P01")) is True

    with pytest.raises(ValueError):
        ErrorClassifier(["serialization"])
