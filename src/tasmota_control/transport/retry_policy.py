"""Reconnect backoff for broker sessions."""

from __future__ import annotations

import random


class ReconnectPolicy:
    """Exponential backoff with jitter between broker connection attempts.

    Jitter keeps many sessions that lost the same broker from reconnecting
    in lockstep.
    """

    def __init__(
        self,
        base_delay_seconds: float = 1.0,
        max_delay_seconds: float = 30.0,
        jitter_factor: float = 0.1,
    ) -> None:
        """Initialize reconnect policy.

        Args:
            base_delay_seconds: Delay before the first retry
            max_delay_seconds: Upper bound for any single delay
            jitter_factor: Jitter as a fraction of the delay (0.1 = up to 10% extra)
        """
        self.base_delay_seconds = base_delay_seconds
        self.max_delay_seconds = max_delay_seconds
        self.jitter_factor = jitter_factor

    def get_delay(self, attempt: int) -> float:
        """Delay before retry ``attempt`` (0-indexed): ``min(base * 2**attempt, max) + jitter``."""
        delay = min(self.base_delay_seconds * (2**attempt), self.max_delay_seconds)
        return delay + random.uniform(0, delay * self.jitter_factor)

    def __repr__(self) -> str:
        return (
            f"ReconnectPolicy(base_delay={self.base_delay_seconds}s, "
            f"max_delay={self.max_delay_seconds}s, "
            f"jitter_factor={self.jitter_factor})"
        )
