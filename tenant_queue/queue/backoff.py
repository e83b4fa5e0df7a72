"""
Retry delay policy.
"""

import random
from collections.abc import Callable
from dataclasses import dataclass, field

from tenant_queue.constants import (
    DEFAULT_BACKOFF_BASE_SECONDS,
    DEFAULT_BACKOFF_JITTER,
    DEFAULT_BACKOFF_MAX_SECONDS,
)


@dataclass
class ExponentialBackoff:
    """
    Exponential backoff with bounded upward jitter.

    The undithered delay for n prior attempts is base * 2**n, capped at
    max_seconds. Jitter stretches it by a random factor in [1, 1 + jitter]
    and the result is capped again. With jitter <= 1 the delay never
    decreases as attempts grow, whatever the random draws.
    """

    base_seconds: float = DEFAULT_BACKOFF_BASE_SECONDS
    max_seconds: float = DEFAULT_BACKOFF_MAX_SECONDS
    jitter: float = DEFAULT_BACKOFF_JITTER
    random_fn: Callable[[], float] = field(default=random.random, repr=False)

    def __post_init__(self) -> None:
        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError("jitter must be between 0 and 1")
        if self.base_seconds < 0 or self.max_seconds < 0:
            raise ValueError("backoff delays must be non-negative")

    def raw_delay(self, attempts: int) -> float:
        """Get the capped delay before jitter."""
        attempts = max(0, attempts)
        # Beyond this the doubling would only be capped anyway
        if attempts > 62:
            return self.max_seconds
        return min(self.max_seconds, self.base_seconds * (2**attempts))

    def __call__(self, attempts: int) -> float:
        """
        Get the delay in seconds before retrying a job.

        Args:
            attempts: Attempts the job had before the one that just failed.
        """
        raw = self.raw_delay(attempts)
        return min(self.max_seconds, raw * (1.0 + self.jitter * self.random_fn()))
