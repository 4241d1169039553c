"""Transaction retry orchestration for optimistic-concurrency SQL databases.

:func:`execute_tx` runs a unit of work inside a database transaction and
replays the *whole* unit of work whenever the database aborts it with a
serialization failure.  Every attempt is a fresh ``begin`` on the supplied
:class:`TransactionSource`; nothing is carried over from a failed attempt.

Each invocation walks an explicit state machine::

    BEGIN -> RUN -> COMMIT -> DONE
               \\        \\
                +-> RETRY <-+ -> BEGIN
                \\        /
                 FAILED <

Any error that is not classified as retryable leaves the machine in
``FAILED`` and is raised to the caller unchanged.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Protocol, TypeVar, runtime_checkable

from tenacity import RetryError  # type: ignore[import-not-found]

from .classification import AttemptOutcome, ErrorClassifier
from .exceptions import RetryLimitExceededError, TransactionStateError
from .retry import RetryPolicy

__all__ = [
    "TransactionHandle",
    "TransactionOrchestrator",
    "TransactionReport",
    "TransactionSource",
    "TransactionState",
    "WorkFunction",
    "execute_tx",
]

Params = Mapping[str, Any] | Sequence[Any] | None
T = TypeVar("T")

_logger = logging.getLogger(__name__)


@runtime_checkable
class TransactionHandle(Protocol):
    """Single-use handle bound to one attempt."""

    def execute(self, statement: str, params: Params = None) -> int:  # pragma: no cover - protocol
        """Execute a statement and return the affected row count."""

    def query(self, statement: str, params: Params = None) -> list[Any]:  # pragma: no cover - protocol
        """Execute a statement and return all result rows."""

    def commit(self) -> None:  # pragma: no cover - protocol
        """Commit the transaction."""

    def rollback(self) -> None:  # pragma: no cover - protocol
        """Roll the transaction back."""


@runtime_checkable
class TransactionSource(Protocol):
    """Anything able to open a new transaction."""

    def begin(self) -> TransactionHandle:  # pragma: no cover - protocol
        """Begin a transaction and return its handle."""


WorkFunction = Callable[[TransactionHandle], T]


class TransactionState(str, Enum):
    BEGIN = "begin"
    RUN = "run"
    COMMIT = "commit"
    RETRY = "retry"
    DONE = "done"
    FAILED = "failed"


_TRANSITIONS: dict[TransactionState, frozenset[TransactionState]] = {
    TransactionState.BEGIN: frozenset({TransactionState.RUN, TransactionState.FAILED}),
    TransactionState.RUN: frozenset(
        {TransactionState.COMMIT, TransactionState.RETRY, TransactionState.FAILED}
    ),
    TransactionState.COMMIT: frozenset(
        {TransactionState.DONE, TransactionState.RETRY, TransactionState.FAILED}
    ),
    TransactionState.RETRY: frozenset({TransactionState.BEGIN, TransactionState.FAILED}),
    TransactionState.DONE: frozenset(),
    TransactionState.FAILED: frozenset(),
}


@dataclass(slots=True)
class TransactionReport:
    """Diagnostics collected during one orchestrator invocation."""

    attempts: int = 0
    state: TransactionState = TransactionState.BEGIN
    history: list[TransactionState] = field(default_factory=list)
    rollback_errors: list[BaseException] = field(default_factory=list)
    last_error: BaseException | None = None

    @property
    def retries(self) -> int:
        return max(self.attempts - 1, 0)

    @property
    def succeeded(self) -> bool:
        return self.state is TransactionState.DONE

    def transition(self, target: TransactionState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise TransactionStateError(
                f"illegal transaction transition {self.state.value} -> {target.value}"
            )
        self.state = target
        self.history.append(target)


class _TransactionRun(Generic[T]):
    """State for a single :meth:`TransactionOrchestrator.run` invocation."""

    def __init__(
        self,
        source: TransactionSource,
        work: Callable[[TransactionHandle], T],
        *,
        classifier: ErrorClassifier,
        logger: logging.Logger,
        report: TransactionReport,
    ) -> None:
        self._source = source
        self._work = work
        self._classifier = classifier
        self._logger = logger
        self.report = report

    def should_retry(self, error: BaseException) -> bool:
        return self.report.state is TransactionState.RETRY

    def attempt(self) -> T:
        report = self.report
        if report.state is TransactionState.RETRY:
            report.transition(TransactionState.BEGIN)
        elif not report.history:
            report.history.append(TransactionState.BEGIN)
        report.attempts += 1

        try:
            handle = self._source.begin()
        except Exception as exc:
            report.last_error = exc
            report.transition(TransactionState.FAILED)
            self._log(logging.ERROR, "Failed to begin transaction", stage="begin", error=exc)
            raise

        report.transition(TransactionState.RUN)
        try:
            result = self._work(handle)
        except Exception as exc:
            self._fail(handle, exc, stage="run")
            raise
        except BaseException as exc:
            self._abort(handle, exc)
            raise

        report.transition(TransactionState.COMMIT)
        try:
            handle.commit()
        except Exception as exc:
            self._fail(handle, exc, stage="commit")
            raise
        except BaseException as exc:
            self._abort(handle, exc)
            raise

        report.last_error = None
        report.transition(TransactionState.DONE)
        if report.attempts > 1:
            self._log(logging.INFO, "Transaction committed after retries", stage="commit")
        return result

    def _fail(self, handle: TransactionHandle, error: Exception, *, stage: str) -> None:
        self._rollback(handle, error)
        self.report.last_error = error
        outcome = self._classifier.classify(error)
        if outcome is AttemptOutcome.RETRYABLE:
            self.report.transition(TransactionState.RETRY)
            self._log(logging.INFO, "Transaction restart requested", stage=stage, error=error)
        else:
            self.report.transition(TransactionState.FAILED)
            self._log(logging.ERROR, "Transaction failed", stage=stage, error=error)

    def _abort(self, handle: TransactionHandle, error: BaseException) -> None:
        """Roll back after an interrupt; interrupts are never classified."""

        self._rollback(handle, error)
        self.report.last_error = error
        self.report.transition(TransactionState.FAILED)

    def _rollback(self, handle: TransactionHandle, primary: BaseException) -> None:
        try:
            handle.rollback()
        except Exception as exc:
            self.report.rollback_errors.append(exc)
            primary.add_note(f"rollback also failed: {exc!r}")
            self._logger.warning(
                "Rollback failed while handling %s",
                type(primary).__name__,
                exc_info=exc,
                extra={"extra_fields": {"stage": "rollback", "attempt": self.report.attempts}},
            )

    def _log(
        self, level: int, message: str, *, stage: str, error: BaseException | None = None
    ) -> None:
        fields: dict[str, object] = {"stage": stage, "attempt": self.report.attempts}
        if error is not None:
            fields["error_type"] = type(error).__name__
            fields["error_message"] = str(error)
        self._logger.log(level, message, extra={"extra_fields": fields})


class TransactionOrchestrator:
    """Run units of work in transactions, restarting them on serialization failures.

    The orchestrator itself is stateless between invocations; every call to
    :meth:`run` owns its own handle, counters and state machine, so a single
    instance may be shared by threads working on independent connections.
    """

    def __init__(
        self,
        *,
        policy: RetryPolicy | None = None,
        classifier: ErrorClassifier | None = None,
        logger: logging.Logger | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self._policy = policy or RetryPolicy()
        self._classifier = classifier or ErrorClassifier()
        self._logger = logger or _logger
        self._sleep = sleep

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    @property
    def classifier(self) -> ErrorClassifier:
        return self._classifier

    def run(
        self,
        source: TransactionSource,
        work: Callable[[TransactionHandle], T],
        *,
        report: TransactionReport | None = None,
    ) -> T:
        """Execute *work* until it commits or fails with a non-retryable error."""

        if report is not None and report.history:
            raise TransactionStateError("a TransactionReport can only record a single invocation")
        state = _TransactionRun(
            source,
            work,
            classifier=self._classifier,
            logger=self._logger,
            report=report if report is not None else TransactionReport(),
        )
        retrying = self._policy.build(
            logger=self._logger, retry=state.should_retry, sleep=self._sleep
        )
        try:
            return retrying(state.attempt)
        except RetryError as exc:
            last_error = exc.last_attempt.exception()
            state.report.transition(TransactionState.FAILED)
            self._logger.error(
                "Giving up on transaction after %d attempt(s)",
                state.report.attempts,
                extra={"extra_fields": {"stage": "retry", "attempt": state.report.attempts}},
            )
            raise RetryLimitExceededError(state.report.attempts, last_error) from last_error


def execute_tx(
    source: TransactionSource,
    work: Callable[[TransactionHandle], T],
    *,
    policy: RetryPolicy | None = None,
    classifier: ErrorClassifier | None = None,
    logger: logging.Logger | None = None,
    report: TransactionReport | None = None,
) -> T:
    """Run *work* in a transaction on *source*, retrying on serialization failures.

    Parameters
    ----------
    source:
        Object whose ``begin()`` opens a new transaction for every attempt.
    work:
        Callable receiving the transaction handle. It may run several times
        and must not keep the handle after returning.
    policy:
        Optional :class:`RetryPolicy`; the default retries without limit.
    classifier:
        Optional :class:`ErrorClassifier` deciding which SQLSTATE codes restart
        the transaction.
    report:
        Optional :class:`TransactionReport` populated with attempt diagnostics.

    Returns
    -------
    The value returned by *work* on the attempt that committed.
    """

    orchestrator = TransactionOrchestrator(policy=policy, classifier=classifier, logger=logger)
    return orchestrator.run(source, work, report=report)
