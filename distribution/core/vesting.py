# MIT License
# Copyright (c) 2025 Hashborn

class VestingCurve:
    """Referral pool: linear unlock of `cap` over `duration` seconds."""

    def __init__(self, cap: int, duration: int):
        if duration <= 0:
            raise ValueError(f"Vesting duration must be positive, got {duration}")
        if cap < 0:
            raise ValueError(f"Vesting cap must be non-negative, got {cap}")
        self.cap = int(cap)
        self.duration = int(duration)

    def unlocked(self, elapsed: int) -> int:
        # Clamp before multiplying; division truncates, exact at elapsed == duration
        vested_time = min(max(0, int(elapsed)), self.duration)
        return self.cap * vested_time // self.duration
