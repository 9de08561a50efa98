"""
Backoff schedules for retried work.
"""

from __future__ import annotations

import random


def exponential_backoff(
    attempt: int,
    *,
    base_seconds: float,
    multiplier: float = 2.0,
    cap_seconds: float | None = None,
    jitter_seconds: float = 0.0,
    rng: random.Random | None = None,
) -> float:
    """
    Delay before retry number `attempt` (1-based), with additive jitter.

    The deterministic part grows as `base * multiplier ** (attempt - 1)` and is
    capped by `cap_seconds`; jitter is drawn uniformly from [0, jitter_seconds].
    """

    exponent = max(0, attempt - 1)
    delay = max(0.0, base_seconds) * (max(1.0, multiplier) ** exponent)
    if cap_seconds is not None:
        delay = min(delay, max(0.0, cap_seconds))
    if jitter_seconds > 0:
        delay += (rng or random).uniform(0.0, jitter_seconds)
    return delay


def linear_backoff(attempt: int, *, base_seconds: float) -> float:
    return max(0, attempt) * max(0.0, base_seconds)
