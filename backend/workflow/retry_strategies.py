"""Node retry strategies.

A strategy answers two questions for a failing node: may it be retried
again, and how long to wait before the next attempt. The engine's default
is a fixed backoff schedule (1s, 5s, 15s, 30s, 60s); every handler error
takes the same path, so there is no error classification here.

Usage:
    strategy = RetryStrategy.schedule([1, 5, 15, 30, 60])
    if strategy.should_retry(step.retry_count):
        delay = strategy.compute_delay(step.retry_count + 1)
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Sequence


class RetryPolicy(str, Enum):
    """Available retry policies."""
    SCHEDULE = "schedule"
    NONE = "none"


DEFAULT_BACKOFF_SCHEDULE: tuple[float, ...] = (1.0, 5.0, 15.0, 30.0, 60.0)


@dataclass(frozen=True)
class RetryStrategy:
    """Bounded retry plan for workflow nodes.

    ``delays`` holds one delay (seconds) per allowed retry, so
    ``max_retries == len(delays)``.
    """
    policy: RetryPolicy
    delays: tuple[float, ...] = field(default_factory=tuple)

    @property
    def max_retries(self) -> int:
        return len(self.delays)

    @classmethod
    def none(cls) -> 'RetryStrategy':
        """No retries — fail immediately."""
        return cls(policy=RetryPolicy.NONE)

    @classmethod
    def schedule(cls, delays: Sequence[float] = DEFAULT_BACKOFF_SCHEDULE) -> 'RetryStrategy':
        """Explicit, ordered list of delays. An empty list means no retries."""
        if any(d < 0 for d in delays):
            raise ValueError("Retry delays must be non-negative")
        if not delays:
            return cls.none()
        return cls(policy=RetryPolicy.SCHEDULE, delays=tuple(float(d) for d in delays))

    @classmethod
    def from_settings(cls, settings) -> 'RetryStrategy':
        """Build the engine-wide schedule from ``Settings.RETRY_DELAYS``."""
        return cls.schedule(settings.retry_delays_list)

    def compute_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        if not self.delays or attempt < 1:
            return 0.0
        return self.delays[min(attempt, len(self.delays)) - 1]

    def should_retry(self, retry_count: int) -> bool:
        """True while fewer than ``max_retries`` retries have been used."""
        return retry_count < self.max_retries
