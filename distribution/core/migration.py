# MIT License
# Copyright (c) 2025 Hashborn

"""
Migration lock.

Inactive -> Locked (start) -> Swept (sweep). Starting freezes the unlock clock
at the moment of the call; the sweep opens once `migration_timestamp` has
passed. Neither transition can be undone.
"""

from pydantic import BaseModel, Field
from typing import Optional
from protocol.types.common import ErrorCode
from .errors import LifecycleError


class MigrationLock(BaseModel):
    active: bool = False
    lock_timestamp: int = 0                  # clock fed to both curves once active
    migration_timestamp: int = 0             # sweep allowed strictly after this
    swept_timestamp: Optional[int] = Field(default=None)

    def effective_time(self, now: int) -> int:
        """Clock value the curves should see at `now`."""
        if self.active:
            return min(now, self.lock_timestamp)
        return now

    def check_can_start(self, now: int, target_timestamp: int, min_delay: int):
        if self.active:
            raise LifecycleError(ErrorCode.MIGRATION_ALREADY_STARTED, "Migration has already been started")
        if target_timestamp < now + min_delay:
            raise LifecycleError(
                ErrorCode.MIGRATION_TOO_SOON,
                f"Migration timestamp {target_timestamp} must be at least {min_delay}s after {now}"
            )

    def start(self, now: int, target_timestamp: int, min_delay: int) -> "MigrationLock":
        """Returns the locked state; self is left untouched."""
        self.check_can_start(now, target_timestamp, min_delay)
        return MigrationLock(
            active=True,
            lock_timestamp=now,
            migration_timestamp=target_timestamp,
        )

    def check_can_sweep(self, now: int):
        if not self.active:
            raise LifecycleError(ErrorCode.MIGRATION_NOT_STARTED, "Migration has not been started")
        if now <= self.migration_timestamp:
            raise LifecycleError(
                ErrorCode.MIGRATION_GRACE_PERIOD,
                f"Sweep opens after {self.migration_timestamp} (now {now})"
            )

    def mark_swept(self, now: int) -> "MigrationLock":
        return self.model_copy(update={"swept_timestamp": now})

    @property
    def swept(self) -> bool:
        return self.swept_timestamp is not None
