# SPDX-License-Identifier: MIT
from __future__ import annotations

import os

import pytest

from tests.utils.occ import OccDatabase
from txretry.retry import RetryPolicy


@pytest.fixture()
def occ_database() -> OccDatabase:
    return OccDatabase()


@pytest.fixture()
def immediate_policy() -> RetryPolicy:
    return RetryPolicy.immediate()


@pytest.fixture()
def live_dsn(request: pytest.FixtureRequest) -> str:
    dsn = request.config.getoption("live_dsn") or os.environ.get("TXRETRY_TEST_DSN")
    if not dsn:
        pytest.skip("no live database configured")
    return dsn
