"""Bounded retry with exponential backoff around gateway calls."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from ..config import RetryConfig, StateWaitConfig
from ..exceptions import APIError, ResourcePendingError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


def is_retryable(exc: BaseException) -> bool:
    """Classify a gateway failure.

    Transport failures (no status code), timeouts, throttling and 5xx are
    transient. Not-found, conflict and every other 4xx are terminal, as is
    anything that is not an ``APIError``.
    """
    if isinstance(exc, ResourcePendingError):
        return True
    if not isinstance(exc, APIError):
        return False
    if exc.status_code is None:
        return True
    return exc.status_code in RETRYABLE_STATUS_CODES or exc.status_code >= 500


class RetryPolicy:
    """Re-executes an operation until success, a terminal error, or exhaustion."""

    def __init__(
        self,
        config: RetryConfig | StateWaitConfig,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._max_attempts = config.max_attempts
        self._base_delay = config.base_delay_seconds
        self._factor = config.backoff_factor
        self._max_delay = config.max_delay_seconds
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def delay_for(self, attempt: int) -> float:
        """Backoff before retrying after the given (1-based) failed attempt."""
        return min(self._base_delay * (self._factor ** (attempt - 1)), self._max_delay)

    def call(self, operation: Callable[[], T], description: str = "operation") -> T:
        """Run ``operation``; return its result or raise the last error."""
        started = time.monotonic()
        for attempt in range(1, self._max_attempts + 1):
            try:
                return operation()
            except Exception as exc:
                if not is_retryable(exc):
                    raise
                extra = {
                    "operation": description,
                    "attempt": attempt,
                    "elapsed_seconds": round(time.monotonic() - started, 3),
                }
                if attempt >= self._max_attempts:
                    logger.error("%s failed after %d attempts: %s", description, attempt, exc, extra=extra)
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "%s failed on attempt %d/%d (%s), retrying in %.1fs",
                    description, attempt, self._max_attempts, exc, delay,
                    extra=extra,
                )
                self._sleep(delay)
        # max_attempts >= 1 is enforced by config validation
        raise RuntimeError("retry loop exited without a result")
