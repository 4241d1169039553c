"""Bank-transfer write-skew scenario.

Two (or more) writers each read the balances of accounts 1 and 2, wait
until every writer has read the same snapshot, then move ``amount`` from
the richer account to the poorer one.  Without serializable isolation and
transaction restarts the writers would all act on the stale snapshot and
money would be created or destroyed.  With them, every writer but one is
restarted, re-reads the committed balances and moves the money back, so
the total is conserved and the final balances are a valid outcome of
running the transfers one after another.
"""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Callable
from dataclasses import dataclass, field

from .exceptions import ScenarioError
from .naming import ScratchNameGenerator
from .transactions import (
    TransactionHandle,
    TransactionOrchestrator,
    TransactionReport,
    TransactionSource,
)

__all__ = ["BankTransferScenario", "TransferOutcome"]

_logger = logging.getLogger(__name__)

_IDENTIFIER_RE = re.compile(r"^[a-z_][a-z0-9_]{0,62}$")

CREATE_SCHEMA = "CREATE SCHEMA IF NOT EXISTS {ns}"
CREATE_TABLE = "CREATE TABLE {ns}.accounts (acct INT PRIMARY KEY, balance INT NOT NULL)"
SEED_ACCOUNTS = "INSERT INTO {ns}.accounts (acct, balance) VALUES (1, {first}), (2, {second})"
SELECT_BALANCES = "SELECT balance FROM {ns}.accounts WHERE acct IN (1, 2) ORDER BY acct"
ADJUST_BALANCE = "UPDATE {ns}.accounts SET balance = balance {op} {amount} WHERE acct = {acct}"
DROP_SCHEMA = "DROP SCHEMA IF EXISTS {ns} CASCADE"


@dataclass(frozen=True)
class TransferOutcome:
    """Result of :meth:`BankTransferScenario.run`."""

    iterations: tuple[int, ...]
    errors: tuple[BaseException | None, ...]
    balances: tuple[int, int]
    expected_total: int
    reports: tuple[TransactionReport, ...] = field(default=(), compare=False)

    @property
    def succeeded(self) -> bool:
        return all(error is None for error in self.errors)

    @property
    def total_iterations(self) -> int:
        return sum(self.iterations)

    @property
    def retried(self) -> bool:
        return self.total_iterations > len(self.iterations)

    @property
    def conserved(self) -> bool:
        return sum(self.balances) == self.expected_total


class BankTransferScenario:
    """Run concurrent, conflicting balance transfers through the orchestrator.

    Parameters
    ----------
    source_factory:
        Callable returning a transaction source.  Each writer calls it once,
        so it should hand out independent connections.
    namespace:
        Schema holding the ``accounts`` table. Generated when omitted.
    name_generator:
        Generator used when ``namespace`` is omitted.
    amount, opening_balance:
        Transfer size and the initial balance of both accounts.
    orchestrator:
        Orchestrator shared by every writer.
    barrier_timeout:
        Seconds a writer waits for the others to read before giving up.
    """

    def __init__(
        self,
        source_factory: Callable[[], TransactionSource],
        *,
        namespace: str | None = None,
        name_generator: ScratchNameGenerator | None = None,
        amount: int = 100,
        opening_balance: int = 100,
        orchestrator: TransactionOrchestrator | None = None,
        barrier_timeout: float = 30.0,
    ) -> None:
        if namespace is None:
            namespace = (name_generator or ScratchNameGenerator()).next_name()
        if not _IDENTIFIER_RE.match(namespace):
            raise ValueError(f"namespace must be a lowercase SQL identifier; got {namespace!r}")
        if amount <= 0:
            raise ValueError("amount must be positive")
        self._source_factory = source_factory
        self._namespace = namespace
        self._amount = int(amount)
        self._opening_balance = int(opening_balance)
        self._orchestrator = orchestrator or TransactionOrchestrator()
        self._barrier_timeout = float(barrier_timeout)

    @property
    def namespace(self) -> str:
        return self._namespace

    @property
    def expected_total(self) -> int:
        return 2 * self._opening_balance

    def setup(self) -> None:
        """Create the scratch schema and seed both accounts."""

        ns = self._namespace

        def _create(handle: TransactionHandle) -> None:
            handle.execute(CREATE_SCHEMA.format(ns=ns))
            handle.execute(CREATE_TABLE.format(ns=ns))

        def _seed(handle: TransactionHandle) -> None:
            handle.execute(
                SEED_ACCOUNTS.format(
                    ns=ns, first=self._opening_balance, second=self._opening_balance
                )
            )

        source = self._source_factory()
        self._orchestrator.run(source, _create)
        self._orchestrator.run(source, _seed)
        _logger.info(
            "Seeded scenario accounts",
            extra={"extra_fields": {"namespace": ns, "opening_balance": self._opening_balance}},
        )

    def teardown(self) -> None:
        """Drop the scratch schema."""

        ns = self._namespace
        self._orchestrator.run(
            self._source_factory(), lambda handle: handle.execute(DROP_SCHEMA.format(ns=ns))
        )

    def read_balances(self, handle: TransactionHandle) -> tuple[int, int]:
        rows = handle.query(SELECT_BALANCES.format(ns=self._namespace))
        if len(rows) < 2:
            raise ScenarioError(f"expected two balances; got {len(rows)}")
        return int(rows[0][0]), int(rows[1][0])

    def balances(self) -> tuple[int, int]:
        return self._orchestrator.run(self._source_factory(), self.read_balances)

    def run(self, writers: int = 2) -> TransferOutcome:
        """Start *writers* concurrent transfers and wait for all of them."""

        if writers < 1:
            raise ValueError("at least one writer is required")
        barrier = threading.Barrier(writers, timeout=self._barrier_timeout)
        iterations = [0] * writers
        errors: list[BaseException | None] = [None] * writers
        reports = [TransactionReport() for _ in range(writers)]

        def _writer(index: int) -> None:
            work = self._transfer_work(index, iterations, barrier)
            try:
                self._orchestrator.run(self._source_factory(), work, report=reports[index])
            except Exception as exc:
                errors[index] = exc
                # Release writers still parked on their first read.
                barrier.abort()

        threads = [
            threading.Thread(target=_writer, args=(index,), name=f"transfer-{index + 1}")
            for index in range(writers)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        outcome = TransferOutcome(
            iterations=tuple(iterations),
            errors=tuple(errors),
            balances=self.balances(),
            expected_total=self.expected_total,
            reports=tuple(reports),
        )
        _logger.info(
            "Bank transfer scenario finished",
            extra={
                "extra_fields": {
                    "namespace": self._namespace,
                    "iterations": list(outcome.iterations),
                    "balances": list(outcome.balances),
                    "succeeded": outcome.succeeded,
                }
            },
        )
        return outcome

    def _transfer_work(
        self,
        index: int,
        iterations: list[int],
        barrier: threading.Barrier,
    ) -> Callable[[TransactionHandle], None]:
        ns = self._namespace
        amount = self._amount

        def _transfer(handle: TransactionHandle) -> None:
            iterations[index] += 1
            first, second = self.read_balances(handle)
            # On the first iteration wait until every writer has read the same snapshot.
            if iterations[index] == 1:
                barrier.wait()
            if first > second:
                debit, credit = 1, 2
            else:
                debit, credit = 2, 1
            handle.execute(ADJUST_BALANCE.format(ns=ns, op="-", amount=amount, acct=debit))
            handle.execute(ADJUST_BALANCE.format(ns=ns, op="+", amount=amount, acct=credit))

        return _transfer
