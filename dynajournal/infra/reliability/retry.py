# =============================================================================
# File: dynajournal/infra/reliability/retry.py
# Description: Retry mechanism with exponential backoff and jitter
# =============================================================================

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from typing import TypeVar, Callable, Optional, Awaitable

from dynajournal.config.reliability_config import RetryConfig

logger = logging.getLogger("dynajournal.reliability.retry")

T = TypeVar('T')


# Jitter strategies
class JitterStrategy(ABC):
    """Base class for jitter strategies."""

    @abstractmethod
    def apply(self, base_delay: float) -> float:
        """Apply jitter to base delay."""
        pass


class FullJitter(JitterStrategy):
    """Full jitter: delay = random(0, base_delay)."""

    def apply(self, base_delay: float) -> float:
        return random.uniform(0, base_delay)


class EqualJitter(JitterStrategy):
    """Equal jitter: delay = base_delay/2 + random(0, base_delay/2)."""

    def apply(self, base_delay: float) -> float:
        half = base_delay / 2
        return half + random.uniform(0, half)


def get_jitter_strategy(jitter_type: str) -> JitterStrategy:
    """Get jitter strategy by name."""
    strategies = {
        'full': FullJitter(),
        'equal': EqualJitter(),
    }
    return strategies.get(jitter_type, FullJitter())


def backoff_delay_seconds(retry_config: RetryConfig, attempt: int) -> float:
    """Delay before the retry that follows `attempt` (1-based)."""
    base_delay_ms = min(
        retry_config.initial_delay_ms * (retry_config.backoff_factor ** (attempt - 1)),
        retry_config.max_delay_ms
    )

    if retry_config.jitter:
        base_delay_ms = get_jitter_strategy(retry_config.jitter_type).apply(base_delay_ms)

    return base_delay_ms / 1000


async def retry_async(
        func: Callable[..., Awaitable[T]],
        *args,
        retry_config: Optional[RetryConfig] = None,
        context: str = "operation",
        **kwargs
) -> T:
    """Execute async function with retry logic."""
    if retry_config is None:
        retry_config = RetryConfig()

    last_exception: Optional[Exception] = None

    for attempt in range(1, retry_config.max_attempts + 1):
        try:
            return await func(*args, **kwargs)

        except Exception as e:
            last_exception = e

            if retry_config.retry_condition and not retry_config.retry_condition(e):
                raise

            if attempt >= retry_config.max_attempts:
                logger.warning(
                    f"Retry exhausted for {context} after {attempt} attempts. Last error: {e}"
                )
                raise

            delay_seconds = backoff_delay_seconds(retry_config, attempt)

            logger.info(
                f"Retry attempt {attempt}/{retry_config.max_attempts} for {context} "
                f"after error: {e}. Waiting {delay_seconds:.2f}s before retry."
            )

            await asyncio.sleep(delay_seconds)

    if last_exception:
        raise last_exception
    raise RuntimeError("Unexpected retry failure")

