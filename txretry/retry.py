"""Configurable retry strategy for transactions aborted by serialization conflicts."""

from __future__ import annotations

import logging
from collections.abc import Callable

from pydantic import BaseModel, Field, NonNegativeFloat, PositiveFloat, PositiveInt, model_validator
from tenacity import (  # type: ignore[import-not-found]
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    stop_after_delay,
    stop_never,
    wait_none,
    wait_random,
    wait_random_exponential,
)

__all__ = ["RetryPolicy"]


class RetryPolicy(BaseModel):
    """Retry configuration with optional attempt ceiling, exponential backoff and jitter.

    The default policy never gives up: contention between well-behaved
    transactions resolves on its own, and a short randomised pause between
    attempts keeps competing writers from re-colliding in lock step.
    """

    max_attempts: PositiveInt | None = Field(
        None,
        description="Maximum number of attempts before giving up. Use null for unbounded retries.",
    )
    initial_backoff: NonNegativeFloat = Field(
        0.01,
        description="Initial backoff interval in seconds before the first retry.",
    )
    max_backoff: PositiveFloat = Field(
        1.0,
        description="Upper bound for the exponential backoff window.",
    )
    max_jitter: NonNegativeFloat = Field(
        0.01,
        description="Additional random jitter applied on top of the exponential backoff.",
    )
    max_elapsed: PositiveFloat | None = Field(
        None,
        description="Stop retrying once this many seconds have elapsed since the first attempt.",
    )

    @model_validator(mode="after")
    def _validate_backoff(self) -> "RetryPolicy":
        if self.initial_backoff > self.max_backoff:
            raise ValueError("initial_backoff must not exceed max_backoff")
        return self

    @classmethod
    def unbounded(cls) -> "RetryPolicy":
        return cls()

    @classmethod
    def immediate(cls, max_attempts: int | None = None) -> "RetryPolicy":
        """Policy that retries without sleeping, mostly useful in tests."""

        return cls(max_attempts=max_attempts, initial_backoff=0.0, max_jitter=0.0)

    @property
    def bounded(self) -> bool:
        return self.max_attempts is not None or self.max_elapsed is not None

    def build(
        self,
        *,
        logger: logging.Logger,
        retry: Callable[[BaseException], bool],
        sleep: Callable[[float], None] | None = None,
    ) -> Retrying:
        """Return a configured :class:`~tenacity.Retrying` instance.

        ``reraise`` stays disabled so that callers can tell an exhausted
        policy (:class:`tenacity.RetryError`) apart from a fatal error, which
        tenacity re-raises untouched.
        """

        stop = stop_never
        if self.max_attempts is not None:
            stop = stop_after_attempt(int(self.max_attempts))
        if self.max_elapsed is not None:
            elapsed = stop_after_delay(float(self.max_elapsed))
            stop = elapsed if stop is stop_never else stop | elapsed

        wait = wait_none()
        if self.initial_backoff > 0:
            wait = wait_random_exponential(multiplier=self.initial_backoff, max=self.max_backoff)
        if self.max_jitter > 0:
            wait = wait + wait_random(0, self.max_jitter)

        options: dict[str, object] = {
            "stop": stop,
            "wait": wait,
            "retry": retry_if_exception(retry),
            "before_sleep": before_sleep_log(logger, logging.WARNING),
            "reraise": False,
        }
        if sleep is not None:
            options["sleep"] = sleep
        return Retrying(**options)
