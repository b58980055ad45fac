"""corvid-retry — async retry with exponential backoff, jitter and circuit breaking."""

import logging

from corvid_retry.core.cancellation import (
    CancellationSource,
    CancellationToken,
    CancelSubscription,
    Subscription,
)
from corvid_retry.core.config import Settings, configure_logging, get_settings
from corvid_retry.core.errors import (
    CircuitOpenError,
    ConfigurationError,
    CorvidRetryError,
    ErrorKind,
    RetryCancelledError,
    RetryExhaustedError,
    StateChangeHookError,
    StructuredErrorResponse,
    error_kind,
)
from corvid_retry.resilience import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitState,
    RetryOptions,
    RetryResult,
    compute_delay,
    retry,
    retry_immediate,
    retry_linear,
    with_retry,
)

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "CancellationSource",
    "CancellationToken",
    "CancelSubscription",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitOpenError",
    "CircuitState",
    "ConfigurationError",
    "CorvidRetryError",
    "ErrorKind",
    "RetryCancelledError",
    "RetryExhaustedError",
    "RetryOptions",
    "RetryResult",
    "Settings",
    "StateChangeHookError",
    "StructuredErrorResponse",
    "Subscription",
    "compute_delay",
    "configure_logging",
    "error_kind",
    "get_settings",
    "retry",
    "retry_immediate",
    "retry_linear",
    "with_retry",
]
