# SPDX-License-Identifier: MIT
"""Command line entry point running the write-skew scenario against a live database."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections.abc import Sequence

from .adapters import SqlAlchemyTransactionSource
from .config import TransactionSettings
from .engine import create_engine_from_settings
from .logging import configure_logging
from .naming import ScratchNameGenerator
from .retry import RetryPolicy
from .scenarios import BankTransferScenario, TransferOutcome

__all__ = ["build_parser", "main"]

_logger = logging.getLogger(__name__)


def _positive_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected an integer; got '{value}'") from exc
    if parsed < 1:
        raise argparse.ArgumentTypeError(f"expected a positive integer; got {parsed}")
    return parsed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="txretry",
        description="Run transactions with automatic restarts on serialization failures.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    transfer = subparsers.add_parser(
        "bank-transfer",
        help="Run concurrent conflicting balance transfers and verify they all commit.",
    )
    transfer.add_argument("--dsn", help="SQLAlchemy database URL (defaults to TXRETRY_DSN).")
    transfer.add_argument("--writers", type=_positive_int, default=2)
    transfer.add_argument("--amount", type=_positive_int, default=100)
    transfer.add_argument("--opening-balance", type=_positive_int, default=100)
    transfer.add_argument(
        "--max-attempts",
        type=_positive_int,
        default=None,
        help="Give up after this many attempts per writer (default: retry until committed).",
    )
    transfer.add_argument("--seed", type=int, default=None, help="Seed for the scratch schema name.")
    transfer.add_argument(
        "--keep", action="store_true", help="Keep the scratch schema instead of dropping it."
    )
    transfer.add_argument("--log-level", default=None)
    transfer.add_argument(
        "--plain-logs", action="store_true", help="Emit human readable logs instead of JSON."
    )
    return parser


def _settings_from_args(args: argparse.Namespace) -> TransactionSettings:
    settings = TransactionSettings()
    updates: dict[str, object] = {}
    if args.dsn:
        updates["dsn"] = args.dsn
    if args.max_attempts is not None:
        updates["retry"] = RetryPolicy.model_validate(
            {**settings.retry.model_dump(), "max_attempts": args.max_attempts}
        )
    if args.log_level:
        updates["log_level"] = args.log_level
    if args.plain_logs:
        updates["log_json"] = False
    return settings.model_copy(update=updates)


def _summarise(outcome: TransferOutcome) -> dict[str, object]:
    return {
        "iterations": list(outcome.iterations),
        "balances": list(outcome.balances),
        "expected_total": outcome.expected_total,
        "succeeded": outcome.succeeded,
        "conserved": outcome.conserved,
        "retried": outcome.retried,
        "errors": [None if error is None else repr(error) for error in outcome.errors],
    }


def run_bank_transfer(args: argparse.Namespace) -> int:
    settings = _settings_from_args(args)
    configure_logging(settings.log_level, use_json=settings.log_json)

    engine = create_engine_from_settings(settings)
    try:
        scenario = BankTransferScenario(
            lambda: SqlAlchemyTransactionSource(engine),
            name_generator=ScratchNameGenerator(seed=args.seed),
            amount=args.amount,
            opening_balance=args.opening_balance,
            orchestrator=settings.build_orchestrator(),
        )
        try:
            scenario.setup()
            outcome = scenario.run(writers=args.writers)
        finally:
            if not args.keep:
                scenario.teardown()
    finally:
        engine.dispose()

    print(json.dumps(_summarise(outcome), indent=2))
    if outcome.succeeded and outcome.conserved:
        return 0
    _logger.error("Bank transfer scenario failed", extra={"extra_fields": _summarise(outcome)})
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if args.command == "bank-transfer":
        return run_bank_transfer(args)
    return 2  # pragma: no cover - argparse enforces the subcommand


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
