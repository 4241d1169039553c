"""Classification of database errors into retryable and fatal outcomes.

The decision is driven exclusively by the SQLSTATE code attached to an
error.  Drivers expose that code in different places:

* psycopg 3 and asyncpg use ``error.sqlstate``;
* psycopg2 uses ``error.pgcode``;
* pg8000 passes a response dictionary whose ``C`` key holds the code;
* SQLAlchemy wraps driver errors and keeps the original under ``orig``.

Errors without a recognisable code are always fatal so that programming
mistakes can never turn into an endless retry loop.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator
from enum import Enum

__all__ = [
    "AttemptOutcome",
    "DEADLOCK_DETECTED",
    "DEFAULT_RETRYABLE_SQLSTATES",
    "ErrorClassifier",
    "SERIALIZATION_FAILURE",
    "classify_sqlstate",
    "extract_sqlstate",
    "is_retryable",
]

SERIALIZATION_FAILURE = "40001"
DEADLOCK_DETECTED = "40P01"

DEFAULT_RETRYABLE_SQLSTATES: frozenset[str] = frozenset({SERIALIZATION_FAILURE})

_SQLSTATE_RE = re.compile(r"^[0-9A-Z]{5}$")
_CODE_ATTRIBUTES = ("sqlstate", "pgcode")


class AttemptOutcome(str, Enum):
    """Result of a single begin/work/commit attempt."""

    SUCCESS = "success"
    RETRYABLE = "retryable"
    FATAL = "fatal"


def _normalise(code: object) -> str | None:
    if not isinstance(code, str):
        return None
    candidate = code.strip().upper()
    if _SQLSTATE_RE.match(candidate):
        return candidate
    return None


def _candidates(error: BaseException) -> Iterator[object]:
    # Walk SQLAlchemy ``orig`` wrappers and explicit ``raise ... from`` chains once each.
    seen: set[int] = set()
    pending: list[object] = [error]
    while pending:
        current = pending.pop(0)
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        pending.append(getattr(current, "orig", None))
        pending.append(getattr(current, "__cause__", None))


def _code_from(candidate: object) -> str | None:
    for attribute in _CODE_ATTRIBUTES:
        code = _normalise(getattr(candidate, attribute, None))
        if code is not None:
            return code
    args = getattr(candidate, "args", None)
    if args and isinstance(args[0], dict):
        return _normalise(args[0].get("C"))
    return None


def extract_sqlstate(error: BaseException) -> str | None:
    """Return the SQLSTATE code carried by *error* or any error it wraps."""

    for candidate in _candidates(error):
        code = _code_from(candidate)
        if code is not None:
            return code
    return None


def classify_sqlstate(
    code: str | None,
    retryable: Iterable[str] = DEFAULT_RETRYABLE_SQLSTATES,
) -> AttemptOutcome:
    """Map a SQLSTATE code to :class:`AttemptOutcome`."""

    if code is None:
        return AttemptOutcome.FATAL
    if code in frozenset(retryable):
        return AttemptOutcome.RETRYABLE
    return AttemptOutcome.FATAL


class ErrorClassifier:
    """Classify exceptions using a configurable set of restart codes."""

    def __init__(self, retryable_sqlstates: Iterable[str] = DEFAULT_RETRYABLE_SQLSTATES) -> None:
        codes = set()
        for raw in retryable_sqlstates:
            code = _normalise(raw)
            if code is None:
                raise ValueError(f"invalid SQLSTATE code: {raw!r}")
            codes.add(code)
        self._retryable = frozenset(codes)

    @property
    def retryable_sqlstates(self) -> frozenset[str]:
        return self._retryable

    def classify(self, error: BaseException | None) -> AttemptOutcome:
        if error is None:
            return AttemptOutcome.SUCCESS
        return classify_sqlstate(extract_sqlstate(error), self._retryable)

    def is_retryable(self, error: BaseException) -> bool:
        return self.classify(error) is AttemptOutcome.RETRYABLE

    def __repr__(self) -> str:
        return f"ErrorClassifier(retryable_sqlstates={sorted(self._retryable)!r})"


_DEFAULT_CLASSIFIER = ErrorClassifier()


def is_retryable(error: BaseException) -> bool:
    """Return ``True`` when *error* signals a serialization restart."""

    return _DEFAULT_CLASSIFIER.is_retryable(error)
