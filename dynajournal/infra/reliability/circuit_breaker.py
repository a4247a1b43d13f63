# =============================================================================
# File: dynajournal/infra/reliability/circuit_breaker.py
# Description: Circuit breaker pattern implementation
# =============================================================================

import asyncio
import logging
import time
from collections import deque
from datetime import datetime, timezone
from enum import Enum, auto
from typing import TypeVar, Generic, Callable, Optional, Any, Dict, Awaitable

from dynajournal.config.reliability_config import CircuitBreakerConfig
from dynajournal.infra.metrics.circuit_breaker import (
    circuit_breaker_state,
    circuit_breaker_failures,
    circuit_breaker_trips,
    circuit_breaker_call_duration
)

logger = logging.getLogger("dynajournal.reliability.circuit_breaker")

T = TypeVar('T')


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = auto()
    OPEN = auto()
    HALF_OPEN = auto()


class CircuitBreakerOpenError(Exception):
    """Raised when circuit breaker is open."""
    pass


class CircuitBreaker(Generic[T]):
    """
    Circuit Breaker implementation.

    `failure_predicate` decides which exceptions count against the circuit.
    Exceptions it rejects are re-raised without touching the failure count
    (a backend answering "no" is still a healthy backend).
    """

    def __init__(
            self,
            config: CircuitBreakerConfig,
            failure_predicate: Optional[Callable[[Exception], bool]] = None
    ):
        self.name = config.name
        self.config = config
        self._failure_predicate = failure_predicate

        # Core state
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time: Optional[datetime] = None
        self._half_open_calls = 0

        self._call_metrics: Optional[deque] = None
        if config.window_size:
            self._call_metrics = deque(maxlen=config.window_size)

        self._lock = asyncio.Lock()

    async def call(self, func: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        """Execute function with circuit breaker protection."""
        async with self._lock:
            if not self._can_execute():
                raise CircuitBreakerOpenError(f"Circuit breaker {self.name} is OPEN")

        start_time = time.monotonic()

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            duration = time.monotonic() - start_time
            if self._failure_predicate is None or self._failure_predicate(e):
                await self._on_failure(duration, str(e))
            else:
                await self._on_success(duration)
            raise

        await self._on_success(time.monotonic() - start_time)
        return result

    def can_execute(self) -> bool:
        """Check if operation can be executed."""
        return self._can_execute()

    def _can_execute(self) -> bool:
        """Internal check if operation can be executed."""
        if self._state == CircuitState.CLOSED:
            return True

        if self._state == CircuitState.OPEN:
            if self._should_attempt_reset():
                self._state = CircuitState.HALF_OPEN
                self._half_open_calls = 0
                logger.info(f"circuit_breaker_half_open for {self.name}")
                circuit_breaker_state.labels(name=self.name).set(2)
                return True
            return False

        # HALF_OPEN state
        if self._half_open_calls < self.config.half_open_max_calls:
            self._half_open_calls += 1
            return True
        return False

    async def _on_success(self, duration: float) -> None:
        """Handle successful call."""
        async with self._lock:
            if self._call_metrics is not None:
                self._call_metrics.append((True, duration))

            self._failure_count = 0
            self._success_count += 1

            circuit_breaker_call_duration.labels(name=self.name, result='success').observe(duration)

            if self._state == CircuitState.HALF_OPEN:
                if self._success_count >= self.config.success_threshold:
                    self._transition_to_closed()

    async def _on_failure(self, duration: float, error_details: Optional[str] = None) -> None:
        """Handle failed call."""
        async with self._lock:
            if self._call_metrics is not None:
                self._call_metrics.append((False, duration))

            self._failure_count += 1
            self._last_failure_time = datetime.now(timezone.utc)

            if error_details:
                logger.debug(f"Circuit breaker {self.name} failure: {error_details}")

            circuit_breaker_failures.labels(name=self.name).inc()
            circuit_breaker_call_duration.labels(name=self.name, result='failure').observe(duration)

            if self._state == CircuitState.HALF_OPEN:
                self._transition_to_open()

            elif self._state == CircuitState.CLOSED:
                should_open = self._failure_count >= self.config.failure_threshold

                if (not should_open and
                        self.config.failure_rate_threshold is not None and
                        self._call_metrics is not None and
                        len(self._call_metrics) >= self.config.window_size):
                    should_open = self._calculate_failure_rate() >= self.config.failure_rate_threshold

                if should_open:
                    self._transition_to_open()

    def _calculate_failure_rate(self) -> float:
        """Calculate current failure rate from sliding window."""
        if not self._call_metrics:
            return 0.0

        failures = sum(1 for success, _ in self._call_metrics if not success)
        return failures / len(self._call_metrics)

    def _should_attempt_reset(self) -> bool:
        """Check if timeout has passed."""
        if self._last_failure_time is None:
            return True

        elapsed = (datetime.now(timezone.utc) - self._last_failure_time).total_seconds()
        return elapsed >= self.config.reset_timeout_seconds

    def _transition_to_closed(self) -> None:
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._half_open_calls = 0

        logger.info(f"circuit_breaker_closed for {self.name}")
        circuit_breaker_state.labels(name=self.name).set(0)

    def _transition_to_open(self) -> None:
        self._state = CircuitState.OPEN
        self._success_count = 0

        logger.warning(f"circuit_breaker_opened for {self.name}")
        circuit_breaker_state.labels(name=self.name).set(1)
        circuit_breaker_trips.labels(name=self.name).inc()

    def get_metrics(self) -> Dict[str, Any]:
        """Get metrics (sync method)."""
        return {
            "name": self.name,
            "state": self._state.name,
            "failure_count": self._failure_count,
            "success_count": self._success_count,
            "last_failure_time": self._last_failure_time.isoformat() if self._last_failure_time else None,
        }

    def get_state_sync(self) -> str:
        """Get current state synchronously."""
        return self._state.name
