"""
Retry policy for remote fetches.

Backoff is linear: after failed attempt n the caller waits ``n * unit``
seconds. Remote sources are rate-limit free CDNs, so a predictable
1s, 2s, ... schedule is enough.
"""

import time
from dataclasses import dataclass, field
from typing import Callable


def linear_backoff(unit: float = 1.0) -> Callable[[int], float]:
    """Delay before retrying after failed attempt ``attempt`` (1-based)."""
    def backoff(attempt: int) -> float:
        return attempt * unit
    return backoff


@dataclass
class RetryPolicy:
    """How many times to try and how long to wait in between."""

    max_attempts: int = 3
    backoff: Callable[[int], float] = field(default_factory=linear_backoff)
    sleep: Callable[[float], None] = time.sleep

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def wait(self, attempt: int) -> float:
        """Sleep after failed attempt ``attempt``; returns the delay used."""
        delay = self.backoff(attempt)
        if delay > 0:
            self.sleep(delay)
        return delay
