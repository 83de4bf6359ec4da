"""Exponential-backoff retry for transient faults of external calls."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator
from concurrent.futures import CancelledError
from dataclasses import dataclass
from typing import TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")

# asyncio.CancelledError is a BaseException and is never retried; it stops the caller.
TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    httpx.TransportError,
    TimeoutError,
    ConnectionError,
    CancelledError,
)


@dataclass(slots=True)
class RetryPolicy:
    """Retry an operation on transient errors with capped exponential delays.

    An error is transient when it, or any exception on its ``__cause__`` /
    ``__context__`` chain, is an instance of ``retry_on``, or when ``retry_if``
    accepts it. Other errors propagate on the first attempt. The last
    attempt's error always propagates unchanged.
    """

    max_attempts: int = 3
    initial_delay_seconds: float = 1.0
    backoff_multiplier: float = 2.0
    max_delay_seconds: float = 30.0
    retry_on: tuple[type[BaseException], ...] = TRANSIENT_ERRORS
    retry_if: Callable[[BaseException], bool] | None = None
    sleep: Callable[[float], None] = time.sleep

    def __post_init__(self) -> None:
        self.max_attempts = max(1, self.max_attempts)
        self.initial_delay_seconds = max(0.0, self.initial_delay_seconds)
        self.backoff_multiplier = max(1.0, self.backoff_multiplier)
        self.max_delay_seconds = max(self.initial_delay_seconds, self.max_delay_seconds)

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given failed attempt (1-based)."""

        delay = self.initial_delay_seconds * self.backoff_multiplier ** max(0, attempt - 1)
        return min(self.max_delay_seconds, delay)

    def is_transient(self, error: BaseException) -> bool:
        if self.retry_if is not None and self.retry_if(error):
            return True
        if not self.retry_on:
            return False
        return any(isinstance(item, self.retry_on) for item in _exception_chain(error))

    def execute(self, operation_name: str, operation: Callable[[], T]) -> T:
        attempt = 1
        while True:
            logger.debug(
                "Executing %s (attempt %d/%d)",
                operation_name,
                attempt,
                self.max_attempts,
            )
            try:
                return operation()
            except Exception as error:
                if attempt >= self.max_attempts or not self.is_transient(error):
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "Transient error in %s on attempt %d/%d: %s. Retrying in %.2fs",
                    operation_name,
                    attempt,
                    self.max_attempts,
                    error,
                    delay,
                )
                self.sleep(delay)
                attempt += 1


def _exception_chain(error: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    current: BaseException | None = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__
