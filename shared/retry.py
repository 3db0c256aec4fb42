"""
Retry policy and backoff calculation for resilient operations.
"""

import random
from typing import Optional

# Statuses worth another attempt: upstream overloaded, timed out or broken.
RETRYABLE_STATUS_CODES = frozenset({408, 429})


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(self,
                 base_delay: float = 1.0,
                 max_delay: float = 60.0,
                 exponential_base: float = 2.0,
                 jitter: bool = True):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Calculate delay before the retry that follows ``attempt`` (1-based)."""
    delay = min(config.base_delay * (config.exponential_base ** (attempt - 1)), config.max_delay)

    if config.jitter:
        jitter_amount = delay * 0.1  # 10% jitter
        delay += random.uniform(-jitter_amount, jitter_amount)

    return max(0.0, delay)


def is_retryable(status_code: Optional[int]) -> bool:
    """Whether an outcome may be retried.

    ``None`` means no response was received (connection refused, reset, DNS
    failure, timeout). 5xx, 408 and 429 are retryable; other 4xx are not.
    """
    if status_code is None:
        return True
    return status_code >= 500 or status_code in RETRYABLE_STATUS_CODES
