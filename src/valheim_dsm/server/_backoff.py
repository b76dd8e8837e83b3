"""Exponential backoff for watchdog restarts."""

import random
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ExponentialBackoff:
    """Exponential backoff calculator with optional jitter.

    The delay formula is:
        delay = min(base * (multiplier ^ attempt), max_delay)
        delay = delay * (1 - jitter/2 + random() * jitter)

    Attributes:
        base: Delay in seconds before the first retry.
        max_delay: Upper bound in seconds, or None for unbounded.
        multiplier: Growth factor per attempt.
        jitter: Fraction of the delay to randomize (0.0-1.0).
    """

    base: float = 5.0
    max_delay: float | None = None
    multiplier: float = 2.0
    jitter: float = 0.0

    def delay(self, attempt: int) -> float:
        """Calculate the delay for a retry.

        Args:
            attempt: 0-indexed retry number.

        Returns:
            Seconds to wait before the retry.
        """
        delay = self.base * (self.multiplier ** max(attempt, 0))
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)

        if self.jitter > 0:
            spread = delay * self.jitter
            delay = max(0.0, delay + random.uniform(-spread / 2, spread / 2))  # noqa: S311

        return delay
