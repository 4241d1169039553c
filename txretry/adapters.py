"""Adapters exposing database client objects as transaction sources.

Two families of clients are supported:

* DB-API 2.0 connections (psycopg, psycopg2, pg8000, sqlite3, ...) through
  :class:`DBAPITransactionSource`;
* SQLAlchemy Core ``Engine`` and ``Connection`` objects through
  :class:`SqlAlchemyTransactionSource`.

Handles returned by ``begin()`` are single use: once committed or rolled
back every further call raises :class:`TransactionClosedError`.  A source
refuses to open a second transaction while one of its handles is live.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from threading import Lock
from typing import Any, Protocol

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine, RootTransaction

from .exceptions import TransactionClosedError, TransactionStateError

Params = Mapping[str, Any] | Sequence[Any] | None

__all__ = [
    "DBAPITransaction",
    "DBAPITransactionSource",
    "SqlAlchemyTransaction",
    "SqlAlchemyTransactionSource",
]


class SupportsCursor(Protocol):
    """Protocol representing the minimum surface of a DB-API connection."""

    def cursor(self) -> Any:  # pragma: no cover - runtime duck typing
        """Return a cursor object."""

    def commit(self) -> None:  # pragma: no cover - runtime duck typing
        """Commit the current transaction."""

    def rollback(self) -> None:  # pragma: no cover - runtime duck typing
        """Rollback the current transaction."""


class _LiveGuard:
    """Track the single live handle owned by a source."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._live: object | None = None

    def acquire(self, owner: object) -> None:
        with self._lock:
            if self._live is not None:
                raise TransactionStateError(
                    "a transaction is already open on this source; finish it before beginning another"
                )
            self._live = owner

    def release(self, owner: object) -> None:
        with self._lock:
            if self._live is owner:
                self._live = None

    @property
    def busy(self) -> bool:
        return self._live is not None


class _HandleBase:
    def __init__(self, guard: _LiveGuard) -> None:
        self._guard = guard
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self, operation: str) -> None:
        if self._closed:
            raise TransactionClosedError(f"cannot {operation}: transaction already finished")

    def _finish(self) -> None:
        self._closed = True
        self._guard.release(self)


class DBAPITransaction(_HandleBase):
    """Transaction handle backed by a DB-API 2.0 connection."""

    def __init__(self, connection: SupportsCursor, guard: _LiveGuard) -> None:
        super().__init__(guard)
        self._connection = connection

    def execute(self, statement: str, params: Params = None) -> int:
        self._ensure_open("execute")
        cursor = self._connection.cursor()
        try:
            if params is None:
                cursor.execute(statement)
            else:
                cursor.execute(statement, params)
            return int(getattr(cursor, "rowcount", -1))
        finally:
            cursor.close()

    def query(self, statement: str, params: Params = None) -> list[Any]:
        self._ensure_open("query")
        cursor = self._connection.cursor()
        try:
            if params is None:
                cursor.execute(statement)
            else:
                cursor.execute(statement, params)
            return list(cursor.fetchall())
        finally:
            cursor.close()

    def commit(self) -> None:
        self._ensure_open("commit")
        # A failed commit leaves the handle open so the caller can still roll back.
        self._connection.commit()
        self._finish()

    def rollback(self) -> None:
        if self._closed:
            return
        try:
            self._connection.rollback()
        finally:
            self._finish()


class DBAPITransactionSource:
    """Open transactions on a single DB-API connection.

    DB-API drivers start a transaction implicitly with the first statement.
    ``begin_statement`` can force an explicit ``BEGIN`` (for example to pick
    an isolation level) on drivers running in autocommit mode.
    """

    def __init__(self, connection: SupportsCursor, *, begin_statement: str | None = None) -> None:
        self._connection = connection
        self._begin_statement = begin_statement
        self._guard = _LiveGuard()

    @property
    def connection(self) -> SupportsCursor:
        return self._connection

    def begin(self) -> DBAPITransaction:
        handle = DBAPITransaction(self._connection, self._guard)
        self._guard.acquire(handle)
        if self._begin_statement:
            try:
                cursor = self._connection.cursor()
                try:
                    cursor.execute(self._begin_statement)
                finally:
                    cursor.close()
            except Exception:
                self._guard.release(handle)
                raise
        return handle


class SqlAlchemyTransaction(_HandleBase):
    """Transaction handle wrapping a SQLAlchemy ``Connection`` transaction."""

    def __init__(self, guard: _LiveGuard) -> None:
        super().__init__(guard)
        self._connection: Connection | None = None
        self._transaction: RootTransaction | None = None
        self._close_connection = False

    def _start(self, bind: Engine | Connection) -> None:
        self._close_connection = isinstance(bind, Engine)
        self._connection = bind.connect() if isinstance(bind, Engine) else bind
        try:
            self._transaction = self._connection.begin()
        except Exception:
            if self._close_connection:
                self._connection.close()
            raise

    @property
    def connection(self) -> Connection:
        if self._connection is None:
            raise TransactionStateError("transaction has not been started")
        return self._connection

    def execute(self, statement: str, params: Params = None) -> int:
        self._ensure_open("execute")
        result = self.connection.execute(text(statement), _bind(params))
        return int(result.rowcount)

    def query(self, statement: str, params: Params = None) -> list[Any]:
        self._ensure_open("query")
        return list(self.connection.execute(text(statement), _bind(params)).all())

    def commit(self) -> None:
        self._ensure_open("commit")
        assert self._transaction is not None
        self._transaction.commit()
        self._finish()

    def rollback(self) -> None:
        if self._closed:
            return
        try:
            # A failed commit leaves the transaction inactive but still attached to
            # the connection; rolling it back detaches it so the connection can begin again.
            if self._transaction is not None:
                self._transaction.rollback()
        finally:
            self._finish()

    def _finish(self) -> None:
        super()._finish()
        if self._close_connection and self._connection is not None:
            self._connection.close()


def _bind(params: Params) -> Mapping[str, Any] | None:
    if params is None:
        return None
    if isinstance(params, Mapping):
        return params
    raise TypeError("SQLAlchemy handles accept named parameters only (use :name placeholders)")


class SqlAlchemyTransactionSource:
    """Open transactions on a SQLAlchemy ``Engine`` or ``Connection``.

    With an ``Engine`` every attempt checks out its own connection, which is
    returned to the pool when the attempt finishes.  With a ``Connection``
    attempts run one after another on that connection, which must not hold
    an implicit (autobegun) transaction when ``begin()`` is called.
    """

    def __init__(self, bind: Engine | Connection) -> None:
        self._bind = bind
        self._guard = _LiveGuard()

    @property
    def bind(self) -> Engine | Connection:
        return self._bind

    def begin(self) -> SqlAlchemyTransaction:
        handle = SqlAlchemyTransaction(self._guard)
        self._guard.acquire(handle)
        try:
            handle._start(self._bind)
        except Exception:
            self._guard.release(handle)
            raise
        return handle
