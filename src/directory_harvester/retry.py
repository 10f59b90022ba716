"""Retry policy shared by orchestrator call sites."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from .errors import TransientNavigationError

T = TypeVar("T")
SleepMsFn = Callable[[int], None]


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retries with a fixed or growing delay between attempts."""

    max_attempts: int = 3
    delay_ms: int = 5000
    backoff: float = 1.0
    retry_on: tuple[type[BaseException], ...] = (TransientNavigationError,)

    def delay_for(self, attempt: int) -> int:
        """Delay after the given 1-based failed attempt."""
        return int(self.delay_ms * (self.backoff ** (attempt - 1)))

    def call(
        self,
        operation: Callable[[], T],
        *,
        sleep_ms: SleepMsFn,
        logger: logging.Logger,
        description: str = "operation",
    ) -> T:
        """Run operation, retrying on ``retry_on`` errors.

        The last error is re-raised once attempts are exhausted; any other
        exception propagates immediately.
        """
        attempt = 1
        while True:
            try:
                logger.debug("%s attempt %d/%d", description, attempt, self.max_attempts)
                return operation()
            except self.retry_on as exc:
                logger.warning(
                    "%s attempt %d/%d failed: %s", description, attempt, self.max_attempts, exc
                )
                if attempt >= self.max_attempts:
                    raise
                sleep_ms(self.delay_for(attempt))
                attempt += 1
