# SPDX-License-Identifier: MIT
"""Pytest configuration shared by the whole repository.

* Ensure the repository root is importable so tests can resolve in-tree
  packages (including the ``tests.utils`` helpers) without installing them.
* Register the ``live_db`` marker and the ``--live-dsn`` option used by the
  tests that talk to a real PostgreSQL/CockroachDB server.
"""

from __future__ import annotations

import os
import pathlib
import sys

import pytest

ROOT = pathlib.Path(__file__).resolve().parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

LIVE_DSN_ENV = "TXRETRY_TEST_DSN"


def pytest_addoption(parser):  # type: ignore[override]
    parser.addoption(
        "--live-dsn",
        action="store",
        default=None,
        help=f"SQLAlchemy URL of a live database; overrides ${LIVE_DSN_ENV}.",
    )


def pytest_configure(config):  # type: ignore[override]
    config.addinivalue_line(
        "markers", "live_db: test requires a live PostgreSQL or CockroachDB server"
    )


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    if config.getoption("live_dsn") or os.environ.get(LIVE_DSN_ENV):
        return
    skip_live = pytest.mark.skip(reason=f"set {LIVE_DSN_ENV} or --live-dsn to run")
    for item in items:
        if "live_db" in item.keywords:
            item.add_marker(skip_live)
