"""
Bounded fixed-delay retry used around challenge validation and certificate
retrieval (12 attempts, 10 seconds apart by default).
"""
from __future__ import annotations

import logging
import time
from typing import Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryExhaustedError(Exception):
    """Every attempt failed; `last_error` is the final failure."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"gave up after {attempts} attempt(s): {last_error}")


class RetryPolicy:
    def __init__(self, max_attempts: int = 12, delay: float = 10.0) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.delay = delay

    def execute(
        self,
        operation: Callable[[], T],
        max_attempts: Optional[int] = None,
        delay: Optional[float] = None,
    ) -> T:
        """Call *operation* until it returns, sleeping *delay* between failures."""
        attempts = max_attempts if max_attempts is not None else self.max_attempts
        wait = delay if delay is not None else self.delay

        last_error: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            try:
                return operation()
            except Exception as exc:
                last_error = exc
                if attempt == attempts:
                    break
                logger.info("Attempt %d/%d failed (%s); retrying in %ss", attempt, attempts, exc, wait)
                time.sleep(wait)

        assert last_error is not None
        raise RetryExhaustedError(attempts, last_error) from last_error
