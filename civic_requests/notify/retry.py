"""
Exponential backoff with jitter for outbound notification delivery.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

import httpx

T = TypeVar("T")

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (httpx.HTTPError, OSError, TimeoutError)


def is_retryable(error: BaseException) -> bool:
    """Transport failures and 5xx answers are transient; a 4xx answer is final."""
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code >= 500
    return True


@dataclass
class RetryConfig:
    """Configuration for retry behavior with exponential backoff."""

    max_retries: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 60.0  # seconds
    exponential_base: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt + 1``, without jitter."""
        return min(self.base_delay * (self.exponential_base**attempt), self.max_delay)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> RetryConfig:
        data = data or {}
        return cls(
            max_retries=int(data.get("max_retries", cls.max_retries)),
            base_delay=float(data.get("base_delay", cls.base_delay)),
            max_delay=float(data.get("max_delay", cls.max_delay)),
            exponential_base=float(data.get("exponential_base", cls.exponential_base)),
        )


def retry_with_backoff(
    func: Callable[[], T],
    config: RetryConfig,
    logger_: Optional[logging.Logger] = None,
    retry_on: tuple[type[BaseException], ...] = RETRYABLE_ERRORS,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Execute a function with exponential backoff and jitter.

    Args:
        func: Callable to execute
        config: RetryConfig with max_retries, base_delay, max_delay, exponential_base
        logger_: Optional logger for retry attempts
        retry_on: Exception types worth another attempt; anything else propagates at once,
            as does an HTTP response with a 4xx status
        sleep: Injected for tests

    Returns:
        Result of successful function call

    Raises:
        Last exception if all retries exhausted
    """
    log = logger_ or logger
    last_error: Optional[BaseException] = None

    for attempt in range(config.max_retries + 1):
        try:
            return func()
        except retry_on as e:
            if not is_retryable(e):
                raise
            last_error = e
            if attempt < config.max_retries:
                delay = config.delay_for(attempt)
                # Jitter: up to 10% of the delay
                actual_delay = delay + random.uniform(0, delay * 0.1)
                log.warning(
                    "Attempt %d failed: %s. Retrying in %.1fs", attempt + 1, e, actual_delay
                )
                sleep(actual_delay)

    log.error("All %d attempts failed", config.max_retries + 1)
    if last_error is not None:
        raise last_error
    raise RuntimeError("All retries exhausted with no captured exception")
