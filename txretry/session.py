"""SQLAlchemy ORM sessions driven through the transaction retry orchestrator."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from threading import Lock
from typing import Any, TypeVar

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .classification import ErrorClassifier
from .exceptions import TransactionClosedError, TransactionStateError
from .retry import RetryPolicy
from .transactions import TransactionHandle, TransactionReport, TransactionOrchestrator

__all__ = ["SessionManager", "SessionTransaction"]

T = TypeVar("T")


class SessionTransaction:
    """Transaction handle exposing a fresh ORM session for one attempt."""

    def __init__(self, session: Session, release: Callable[["SessionTransaction"], None]) -> None:
        self._session = session
        self._release = release
        self._closed = False

    @property
    def session(self) -> Session:
        if self._closed:
            raise TransactionClosedError("session transaction already finished")
        return self._session

    def execute(self, statement: str, params: Mapping[str, Any] | None = None) -> int:
        result = self.session.execute(text(statement), params)
        return int(getattr(result, "rowcount", -1))

    def query(self, statement: str, params: Mapping[str, Any] | None = None) -> list[Any]:
        return list(self.session.execute(text(statement), params).all())

    def commit(self) -> None:
        self.session.commit()
        self._finish()

    def rollback(self) -> None:
        if self._closed:
            return
        try:
            self._session.rollback()
        finally:
            self._finish()

    def _finish(self) -> None:
        self._closed = True
        try:
            self._session.close()
        finally:
            self._release(self)


class SessionManager:
    """Hand out one ORM session per transaction attempt.

    The manager is itself a transaction source, so it can be passed straight
    to :func:`~txretry.transactions.execute_tx`; :meth:`run` is a shortcut
    doing exactly that.
    """

    def __init__(
        self,
        engine: Engine,
        *,
        expire_on_commit: bool = False,
        owns_engine: bool = True,
    ) -> None:
        self._engine = engine
        self._factory = sessionmaker(
            bind=self._engine,
            autoflush=False,
            expire_on_commit=expire_on_commit,
        )
        self._lock = Lock()
        self._live: SessionTransaction | None = None
        self._owns_engine = owns_engine
        self._closed = False

    def begin(self) -> SessionTransaction:
        with self._lock:
            if self._closed:
                raise TransactionStateError("session manager is closed")
            if self._live is not None:
                raise TransactionStateError("a session transaction is already open on this manager")
            session: Session = self._factory()
            try:
                session.begin()
            except Exception:
                session.close()
                raise
            handle = SessionTransaction(session, self._release)
            self._live = handle
            return handle

    def run(
        self,
        work: Callable[[TransactionHandle], T],
        *,
        policy: RetryPolicy | None = None,
        classifier: ErrorClassifier | None = None,
        logger: logging.Logger | None = None,
        report: TransactionReport | None = None,
    ) -> T:
        """Run *work* in a session transaction, restarting it on serialization failures."""

        orchestrator = TransactionOrchestrator(policy=policy, classifier=classifier, logger=logger)
        return orchestrator.run(self, work, report=report)

    def close(self) -> None:
        """Dispose the underlying SQLAlchemy engine if the manager owns it."""

        with self._lock:
            if self._closed:
                return
            self._closed = True
        if self._owns_engine:
            self._engine.dispose()

    @property
    def engine(self) -> Engine:
        return self._engine

    def _release(self, handle: SessionTransaction) -> None:
        with self._lock:
            if self._live is handle:
                self._live = None
