"""
Circuit breaker guarding one downstream dependency.

States:
- CLOSED: calls pass through, consecutive failures are counted
- OPEN: calls fail fast with ServiceUnavailableError
- HALF_OPEN: a single trial call is let through after the cooldown;
  concurrent callers fail fast until it settles

Transitions:
- CLOSED -> OPEN: failure_threshold consecutive failures
- OPEN -> HALF_OPEN: reset_timeout elapsed
- HALF_OPEN -> CLOSED: trial call succeeds
- HALF_OPEN -> OPEN: trial call fails (cooldown restarts)
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, TypeVar

from az_marketplace.errors import ServiceUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(StrEnum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    reset_timeout: float = 60.0  # seconds


class CircuitBreaker:
    """Failure-counting breaker.  Counts are never shared between instances."""

    def __init__(
        self,
        config: CircuitBreakerConfig | None = None,
        *,
        name: str = "arm",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or CircuitBreakerConfig()
        self.name = name
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._next_attempt_at = 0.0
        self._trial_in_flight = False
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def execute(self, operation: Callable[[], T]) -> T:
        with self._lock:
            trial = False
            if self._state == CircuitState.OPEN:
                if self._clock() < self._next_attempt_at:
                    raise ServiceUnavailableError(
                        "Circuit breaker is open - service temporarily unavailable"
                    )
                self._state = CircuitState.HALF_OPEN
                logger.info("Circuit breaker '%s' transitioned to HALF_OPEN", self.name)
            if self._state == CircuitState.HALF_OPEN:
                if self._trial_in_flight:
                    raise ServiceUnavailableError(
                        "Circuit breaker is half-open - trial request in progress"
                    )
                self._trial_in_flight = trial = True

        try:
            result = operation()
        except Exception:
            self._on_failure(trial)
            raise
        self._on_success(trial)
        return result

    def _on_success(self, trial: bool = False) -> None:
        with self._lock:
            if trial:
                self._trial_in_flight = False
            if self._state != CircuitState.CLOSED:
                logger.info("Circuit breaker '%s' CLOSED (recovered)", self.name)
            self._failure_count = 0
            self._state = CircuitState.CLOSED

    def _on_failure(self, trial: bool = False) -> None:
        with self._lock:
            if trial:
                self._trial_in_flight = False
            self._failure_count += 1
            if (
                self._state == CircuitState.HALF_OPEN
                or self._failure_count >= self.config.failure_threshold
            ):
                self._state = CircuitState.OPEN
                self._next_attempt_at = self._clock() + self.config.reset_timeout
                logger.warning(
                    "Circuit breaker '%s' OPENED after %d failures",
                    self.name,
                    self._failure_count,
                )

    def reset(self) -> None:
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._next_attempt_at = 0.0
            self._trial_in_flight = False

    def status(self) -> dict[str, Any]:
        remaining = None
        if self._state == CircuitState.OPEN:
            remaining = max(0.0, self._next_attempt_at - self._clock())
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "time_until_reset": remaining,
        }
