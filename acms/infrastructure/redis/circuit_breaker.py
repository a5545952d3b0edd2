"""
Store Circuit Breaker

Stops calling the key-value store after repeated failures so that an
outage costs callers one fast rejection instead of one timeout per request.
Rejections raise StoreCircuitBreakerOpenException, which callers handle
exactly like any other store error.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .exceptions import StoreCircuitBreakerOpenException

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"  # store calls short-circuited
    HALF_OPEN = "half_open"  # trial calls allowed


@dataclass
class CircuitBreakerConfig:
    """Thresholds for opening and closing the store circuit."""

    # Consecutive failures before opening
    failure_threshold: int = 5

    # Seconds to wait in OPEN before allowing a trial call
    recovery_timeout: float = 30.0

    # Consecutive successes in HALF_OPEN needed to close
    success_threshold: int = 2

    # Concurrent trial calls admitted in HALF_OPEN (defaults to success_threshold)
    half_open_max_calls: Optional[int] = None

    # Only these exception types count as failures
    failure_exceptions: tuple = (
        ConnectionError,
        TimeoutError,
        OSError,
    )

    @property
    def max_trial_calls(self) -> int:
        return self.half_open_max_calls or self.success_threshold


@dataclass
class CircuitBreakerMetrics:
    """Counters reported by the health check."""

    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    rejected_calls: int = 0
    circuit_opens: int = 0
    last_failure_time: Optional[float] = None
    last_success_time: Optional[float] = None

    @property
    def failure_rate(self) -> float:
        return self.failed_calls / self.total_calls if self.total_calls else 0.0


class StoreCircuitBreaker:
    """
    Circuit breaker for key-value store calls.

    The lock only guards state transitions; the protected call itself runs
    outside it so concurrent requests are not serialized. In HALF_OPEN at
    most ``max_trial_calls`` calls are in flight; the rest are rejected as
    if the circuit were still open.
    """

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or CircuitBreakerConfig()
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.trial_calls = 0
        self._epoch = 0
        self.metrics = CircuitBreakerMetrics()
        self._clock = clock
        self._lock = asyncio.Lock()

    async def call(self, func: Callable[[], Awaitable[T]]) -> T:
        """
        Execute an awaitable factory with circuit breaker protection.

        Args:
            func: Zero-argument callable returning the awaitable to run

        Returns:
            Result of the awaitable

        Raises:
            StoreCircuitBreakerOpenException: If the circuit is open, or half-open
                with every trial slot taken
            Exception: Original exception from the call
        """
        async with self._lock:
            if self.state == CircuitState.OPEN:
                if self._should_attempt_reset():
                    self._transition(CircuitState.HALF_OPEN)
                else:
                    self.metrics.rejected_calls += 1
                    raise StoreCircuitBreakerOpenException()

            trial = self.state == CircuitState.HALF_OPEN
            epoch = self._epoch
            if trial:
                if self.trial_calls >= self.config.max_trial_calls:
                    self.metrics.rejected_calls += 1
                    raise StoreCircuitBreakerOpenException(
                        "Store circuit breaker is half-open - trial calls exhausted"
                    )
                self.trial_calls += 1

        self.metrics.total_calls += 1
        try:
            result = await func()
        except self.config.failure_exceptions:
            await self._on_failure()
            raise
        finally:
            # Slots from an earlier HALF_OPEN period were dropped on transition
            if trial and epoch == self._epoch:
                self.trial_calls -= 1

        await self._on_success()
        return result

    def _should_attempt_reset(self) -> bool:
        if self.last_failure_time is None:
            return True
        return self._clock() - self.last_failure_time >= self.config.recovery_timeout

    async def _on_success(self) -> None:
        async with self._lock:
            self.metrics.successful_calls += 1
            self.metrics.last_success_time = self._clock()
            self.failure_count = 0

            if self.state == CircuitState.HALF_OPEN:
                self.success_count += 1
                if self.success_count >= self.config.success_threshold:
                    self._transition(CircuitState.CLOSED)

    async def _on_failure(self) -> None:
        async with self._lock:
            now = self._clock()
            self.metrics.failed_calls += 1
            self.metrics.last_failure_time = now
            self.last_failure_time = now

            if self.state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN)
                return

            self.failure_count += 1
            if (
                self.state == CircuitState.CLOSED
                and self.failure_count >= self.config.failure_threshold
            ):
                self._transition(CircuitState.OPEN)

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self.state
        self.state = new_state
        self.success_count = 0
        self.trial_calls = 0
        self._epoch += 1
        if new_state == CircuitState.OPEN:
            self.metrics.circuit_opens += 1
            logger.warning(
                f"Store circuit breaker opened after {self.failure_count} failures"
            )
        elif new_state == CircuitState.CLOSED:
            self.failure_count = 0
            logger.info("Store circuit breaker closed")
        logger.debug(
            f"Store circuit breaker transition: {old_state.value} -> {new_state.value}"
        )

    def reset(self) -> None:
        """Force the breaker back to CLOSED."""
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.trial_calls = 0
        self._epoch += 1
        self.last_failure_time = None

    def get_status(self) -> dict[str, Any]:
        """Get circuit breaker status for health reporting."""
        return {
            "state": self.state.value,
            "failure_count": self.failure_count,
            "failure_threshold": self.config.failure_threshold,
            "recovery_timeout": self.config.recovery_timeout,
            "trial_calls": self.trial_calls,
            "max_trial_calls": self.config.max_trial_calls,
            "metrics": {
                "total_calls": self.metrics.total_calls,
                "successful_calls": self.metrics.successful_calls,
                "failed_calls": self.metrics.failed_calls,
                "rejected_calls": self.metrics.rejected_calls,
                "circuit_opens": self.metrics.circuit_opens,
                "failure_rate": round(self.metrics.failure_rate, 4),
            },
        }
