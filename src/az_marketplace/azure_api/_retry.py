"""Exponential backoff with jitter for classified ARM errors."""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

from az_marketplace.errors import MarketplaceError, RateLimitError, classify

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRYABLE_CODES = frozenset(
    {
        "NETWORK_ERROR",
        "RATE_LIMIT_ERROR",
        "SERVER_ERROR",
        "SERVICE_UNAVAILABLE",
    }
)


@dataclass(frozen=True)
class RetryConfig:
    """Backoff settings.  Delays are in seconds."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    max_jitter: float = 1.0
    retryable_codes: frozenset[str] = field(default=DEFAULT_RETRYABLE_CODES)


class RetryPolicy:
    """Re-run an operation while it fails with a retryable error kind.

    ``max_retries = N`` allows at most ``N + 1`` attempts.  Whatever the
    operation raises is classified first, so callers only ever see
    :class:`MarketplaceError` subclasses.
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        rand: Callable[[], float] = random.random,
    ) -> None:
        self.config = config or RetryConfig()
        self._sleep = sleep
        self._rand = rand

    def compute_delay(self, attempt: int, error: MarketplaceError) -> float:
        cfg = self.config
        delay = cfg.base_delay * (cfg.backoff_multiplier**attempt)
        if isinstance(error, RateLimitError) and error.retry_after:
            delay = max(delay, error.retry_after)
        delay = min(delay, cfg.max_delay)
        return delay + self._rand() * cfg.max_jitter

    def should_retry(self, error: MarketplaceError) -> bool:
        return error.retryable and error.code in self.config.retryable_codes

    def call(self, operation: Callable[[], T]) -> T:
        attempts = self.config.max_retries + 1
        for attempt in range(attempts):
            try:
                return operation()
            except Exception as exc:
                error = classify(exc)
                if not self.should_retry(error) or attempt == attempts - 1:
                    raise error from (None if error is exc else exc)

                delay = self.compute_delay(attempt, error)
                logger.warning(
                    "%s (attempt %d/%d), retrying in %.2fs",
                    error.code,
                    attempt + 1,
                    attempts,
                    delay,
                )
                self._sleep(delay)

        # Unreachable: the last attempt either returns or raises.
        raise RuntimeError("Retry loop exited without result")


def with_retry(operation: Callable[[], T], config: RetryConfig | None = None) -> T:
    """Run *operation* under a one-off :class:`RetryPolicy`."""
    return RetryPolicy(config).call(operation)
