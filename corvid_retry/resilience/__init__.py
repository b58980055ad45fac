"""Resilience patterns — retry with backoff and circuit breaking.

Provides an async retry executor with exponential backoff and full jitter,
and a three-state circuit breaker that can drive that executor without ever
retrying past an open circuit.
"""

from corvid_retry.resilience.backoff import compute_delay
from corvid_retry.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitState,
)
from corvid_retry.resilience.retry import (
    RetryOptions,
    RetryResult,
    retry,
    retry_immediate,
    retry_linear,
    with_retry,
)

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitState",
    "RetryOptions",
    "RetryResult",
    "compute_delay",
    "retry",
    "retry_immediate",
    "retry_linear",
    "with_retry",
]
