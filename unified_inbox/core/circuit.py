"""Circuit breaker guarding calls to external services."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from enum import Enum
from threading import Lock
from typing import TypeVar

from ..messaging.errors import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Stop calling a dependency after repeated consecutive failures.

    States:
    - CLOSED: calls pass through; failures are counted.
    - OPEN: calls are rejected with :class:`CircuitOpenError` until
      ``recovery_timeout`` seconds have passed since the last failure.
    - HALF_OPEN: a single trial call is let through; other callers are
      rejected while it runs.  Success closes the circuit, failure opens it
      again.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._lock = Lock()
        self.failure_count = 0
        self.last_failure_time: float | None = None
        self.state = CircuitState.CLOSED
        self._trial_in_flight = False

    def call(self, func: Callable[..., T], *args, **kwargs) -> T:
        """Execute ``func`` with circuit breaker protection."""
        trial = self._before_call()
        try:
            result = func(*args, **kwargs)
        except Exception:
            self._on_failure(trial)
            raise
        self._on_success(trial)
        return result

    def _before_call(self) -> bool:
        """Admit or reject a call; return ``True`` when it is the half-open trial."""
        with self._lock:
            if self.state is CircuitState.CLOSED:
                return False
            if self.state is CircuitState.OPEN:
                elapsed = self._clock() - (self.last_failure_time or 0.0)
                if elapsed < self.recovery_timeout:
                    raise CircuitOpenError(f"Circuit breaker {self.name} is open")
                logger.info("Circuit breaker %s entering half-open state", self.name)
                self.state = CircuitState.HALF_OPEN
            if self._trial_in_flight:
                raise CircuitOpenError(f"Circuit breaker {self.name} is probing recovery")
            self._trial_in_flight = True
            return True

    def _on_success(self, trial: bool) -> None:
        with self._lock:
            if trial:
                self._trial_in_flight = False
            if self.state is CircuitState.HALF_OPEN:
                logger.info("Circuit breaker %s closed after successful trial", self.name)
            self.failure_count = 0
            self.state = CircuitState.CLOSED

    def _on_failure(self, trial: bool) -> None:
        with self._lock:
            if trial:
                self._trial_in_flight = False
            self.failure_count += 1
            self.last_failure_time = self._clock()
            if (
                self.state is CircuitState.HALF_OPEN
                or self.failure_count >= self.failure_threshold
            ):
                if self.state is not CircuitState.OPEN:
                    logger.warning(
                        "Circuit breaker %s opened after %d failure(s)",
                        self.name,
                        self.failure_count,
                    )
                self.state = CircuitState.OPEN
