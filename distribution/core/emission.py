# MIT License
# Copyright (c) 2025 Hashborn

"""
Mining pool emission curve.

The schedule is an ordered list of (rate, duration) intervals. Tokens unlock
at `rate` minimal units per second for `duration` seconds, then the next
interval starts. Once every interval has elapsed the curve is flat at the
schedule total.
"""

from typing import List, Tuple
from protocol.config.economic_model import EmissionInterval, schedule_total


class EmissionCurve:
    """Pure function of elapsed time; integer arithmetic only."""

    def __init__(self, schedule: List[EmissionInterval]):
        for rate, duration in schedule:
            if rate < 0 or duration <= 0:
                raise ValueError(f"Invalid emission interval: rate={rate}, duration={duration}")
        self.schedule: Tuple[EmissionInterval, ...] = tuple((int(r), int(d)) for r, d in schedule)

    def unlocked(self, elapsed: int) -> int:
        """
        Cumulative amount unlocked after `elapsed` seconds.

        Args:
            elapsed: Seconds since launch (negative counts as 0)

        Returns:
            Amount in minimal units
        """
        remaining = max(0, int(elapsed))
        total = 0

        for rate, duration in self.schedule:
            if remaining == 0:
                break
            step = min(remaining, duration)
            total += rate * step
            remaining -= step

        return total

    def rate_at(self, elapsed: int) -> int:
        """Emission rate in effect at `elapsed` seconds (0 once the schedule is over)."""
        if elapsed < 0:
            return 0
        offset = int(elapsed)
        for rate, duration in self.schedule:
            if offset < duration:
                return rate
            offset -= duration
        return 0

    def total(self) -> int:
        return schedule_total(list(self.schedule))

    def total_duration(self) -> int:
        return sum(duration for _, duration in self.schedule)
