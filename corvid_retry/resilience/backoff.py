"""Backoff delay calculation.

    delay(n) = min(base_delay * factor ** (n - 1), max_delay)

With jitter enabled the delay is drawn uniformly from ``[0, delay)``
("full jitter") so that many callers failing together do not retry in
lock-step.
"""

from __future__ import annotations

import math
import random
from collections.abc import Callable

from corvid_retry.core.errors import ConfigurationError


def compute_delay(
    attempt: int,
    base_delay: float,
    max_delay: float,
    factor: float,
    jitter: bool,
    *,
    rng: Callable[[], float] = random.random,
) -> float:
    """Return the wait in seconds before the attempt following *attempt*.

    Args:
        attempt:    1-based number of the attempt that just failed.
        base_delay: Delay before the first retry.
        max_delay:  Upper bound on the exponential term.
        factor:     Multiplier per attempt (``1`` gives linear backoff).
        jitter:     Apply full jitter, truncated to whole milliseconds.
        rng:        Uniform source on ``[0, 1)``; injectable for tests.
    """
    if attempt < 1:
        raise ConfigurationError(f"attempt must be >= 1, got {attempt}")

    if base_delay == 0:
        return 0.0

    try:
        exponential = base_delay * factor ** (attempt - 1)
    except OverflowError:
        exponential = math.inf
    capped = min(exponential, max_delay)
    if not jitter:
        return capped
    return math.floor(rng() * capped * 1000) / 1000
