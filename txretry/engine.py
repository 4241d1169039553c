"""Helpers for building SQLAlchemy engines from :class:`TransactionSettings`."""

from __future__ import annotations

import math
from collections.abc import Mapping

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url

from .config import TransactionSettings

__all__ = ["create_engine_from_settings"]


def _build_connect_args(settings: TransactionSettings) -> dict[str, object]:
    """Return connection keyword arguments understood by the configured driver."""

    backend = make_url(settings.dsn).get_backend_name()
    if backend == "sqlite":
        return {"timeout": float(settings.connect_timeout_seconds)}
    if backend in {"postgresql", "cockroachdb"}:
        return {
            # libpq takes whole seconds and treats 0 as no timeout.
            "connect_timeout": max(1, math.ceil(settings.connect_timeout_seconds)),
            "application_name": settings.application_name,
        }
    return {}


def create_engine_from_settings(
    settings: TransactionSettings,
    *,
    execution_options: Mapping[str, object] | None = None,
) -> Engine:
    """Instantiate a SQLAlchemy engine that runs every transaction at the configured isolation."""

    engine = create_engine(
        settings.dsn,
        echo=settings.echo_statements,
        isolation_level=settings.isolation_level,
        pool_pre_ping=True,
        connect_args=_build_connect_args(settings),
    )
    if execution_options:
        engine = engine.execution_options(**execution_options)
    return engine
