"""Timeout and retry wrapper applied to every external call."""

from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

from core.errors import DeadlineExceeded, RAGError, RateLimited

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Deadline:
    """Caller-level time budget shared by all calls of one request."""

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._expires_at = clock() + seconds

    def remaining(self) -> float:
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0.0


class FallbackPolicy:
    """Bounded timeout plus at most `retries` retries for transient errors.

    `fn` receives the effective timeout in seconds and must raise errors from
    `core.errors`; provider exceptions are translated before they get here.
    """

    def __init__(
        self,
        timeout: float,
        retries: int = 1,
        backoff: float = 0.5,
        max_backoff: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.timeout = timeout
        self.retries = retries
        self.backoff = backoff
        self.max_backoff = max_backoff
        self._sleep = sleep

    def _effective_timeout(self, operation: str, deadline: Deadline | None) -> float:
        if deadline is None:
            return self.timeout
        remaining = deadline.remaining()
        if remaining <= 0:
            raise DeadlineExceeded(f"{operation}: request deadline exhausted")
        return min(self.timeout, remaining)

    def _delay_for(self, exc: RAGError, attempt: int) -> float | None:
        """Seconds to wait before retrying, or None to give up."""
        delay = self.backoff * (2**attempt)
        if isinstance(exc, RateLimited) and exc.retry_after is not None:
            if exc.retry_after > self.max_backoff:
                return None
            delay = max(delay, exc.retry_after)
        return min(delay, self.max_backoff)

    def call(
        self,
        operation: str,
        fn: Callable[[float], T],
        deadline: Deadline | None = None,
    ) -> T:
        attempt = 0
        while True:
            timeout = self._effective_timeout(operation, deadline)
            try:
                return fn(timeout)
            except RAGError as e:
                if not e.retryable or attempt >= self.retries:
                    raise
                delay = self._delay_for(e, attempt)
                if delay is None:
                    logger.warning(
                        "%s rate limited, retry-after %.1fs exceeds backoff cap",
                        operation,
                        getattr(e, "retry_after", 0.0),
                    )
                    raise
                if deadline is not None and deadline.remaining() <= delay:
                    raise
                logger.warning(
                    "%s failed (%s), retrying in %.2fs", operation, e, delay
                )
                self._sleep(delay)
                attempt += 1
