# =============================================================================
# File: dynajournal/config/reliability_config.py
# Description: Reliability configuration for circuit breakers and retry
#              patterns around backend calls
# =============================================================================

from typing import Optional, Callable

from pydantic import BaseModel, ConfigDict


# =============================================================================
# Configuration Models (Pydantic BaseModel for type safety)
# =============================================================================

class CircuitBreakerConfig(BaseModel):
    """Circuit breaker configuration."""
    name: str
    failure_threshold: int = 5
    success_threshold: int = 3
    reset_timeout_seconds: float = 30
    half_open_max_calls: int = 3
    window_size: Optional[int] = None
    failure_rate_threshold: Optional[float] = None


class RetryConfig(BaseModel):
    """Retry configuration."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    max_attempts: int = 3
    initial_delay_ms: int = 100
    max_delay_ms: int = 10000
    backoff_factor: float = 2.0
    jitter: bool = True
    jitter_type: str = "full"
    retry_condition: Optional[Callable[[Exception], bool]] = None


# =============================================================================
# ReliabilityConfigs Factory Class
# =============================================================================

class ReliabilityConfigs:
    """Pre-configured reliability settings for backend calls"""

    # =========================================================================
    # DynamoDB
    # =========================================================================
    @staticmethod
    def dynamodb_circuit_breaker(name: str) -> CircuitBreakerConfig:
        return CircuitBreakerConfig(
            name=f"dynamodb_{name}",
            failure_threshold=5,
            success_threshold=3,
            reset_timeout_seconds=30,
            half_open_max_calls=3,
            window_size=20,
            failure_rate_threshold=0.5
        )

    @staticmethod
    def dynamodb_retry(retry_condition: Optional[Callable[[Exception], bool]] = None) -> RetryConfig:
        return RetryConfig(
            max_attempts=3,
            initial_delay_ms=100,
            max_delay_ms=2000,
            backoff_factor=2.0,
            jitter=True,
            jitter_type="full",
            retry_condition=retry_condition
        )

    @staticmethod
    def unprocessed_items_retry(max_attempts: int, initial_delay_ms: int) -> RetryConfig:
        """Backoff schedule for re-submitting BatchWriteItem UnprocessedItems."""
        return RetryConfig(
            max_attempts=max_attempts,
            initial_delay_ms=initial_delay_ms,
            max_delay_ms=5000,
            backoff_factor=2.0,
            jitter=True,
            jitter_type="equal"
        )
