# MIT License
# Copyright (c) 2025 Hashborn

from enum import Enum, IntEnum


class PoolKind(IntEnum):
    MINING = 0      # Decaying emission schedule
    REFERRAL = 1    # Linear vesting (referral / staking rewards)

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def parse(cls, value) -> "PoolKind":
        """Accepts a PoolKind, its wire value (0/1) or its name ("mining")."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().upper()
            if key in cls.__members__:
                return cls[key]
            if key.isdigit():
                return cls(int(key))
            raise ValidationError(f"Unknown pool: {value}")
        return cls(value)


class PoolPhase(str, Enum):
    BEFORE_LAUNCH = "BEFORE_LAUNCH"
    ACCRUING = "ACCRUING"
    MIGRATION_LOCKED = "MIGRATION_LOCKED"
    DRAINED = "DRAINED"


class ErrorCode(str, Enum):
    # Configuration
    INVALID_CONFIGURATION = "INVALID_CONFIGURATION"

    # Claim authorization
    INVALID_VOUCHER = "INVALID_VOUCHER"
    PAUSED = "PAUSED"
    CLAIM_ALREADY_EXISTS = "CLAIM_ALREADY_EXISTS"
    CLAIM_EXPIRED = "CLAIM_EXPIRED"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"

    # Accounting
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    NO_REWARDS_AVAILABLE = "NO_REWARDS_AVAILABLE"
    EXCEEDS_CLAIMABLE_REWARDS = "EXCEEDS_CLAIMABLE_REWARDS"
    EXCEEDS_POOL_CAP = "EXCEEDS_POOL_CAP"
    TRANSFER_FAILED = "TRANSFER_FAILED"
    STORAGE_FAILED = "STORAGE_FAILED"

    # Lifecycle
    DISTRIBUTION_NOT_STARTED = "DISTRIBUTION_NOT_STARTED"
    MIGRATION_ALREADY_STARTED = "MIGRATION_ALREADY_STARTED"
    MIGRATION_TOO_SOON = "MIGRATION_TOO_SOON"
    MIGRATION_NOT_STARTED = "MIGRATION_NOT_STARTED"
    MIGRATION_GRACE_PERIOD = "MIGRATION_GRACE_PERIOD"
    NOTHING_TO_SWEEP = "NOTHING_TO_SWEEP"

    # Access / execution
    UNAUTHORIZED_CALLER = "UNAUTHORIZED_CALLER"
    INVALID_ADDRESS = "INVALID_ADDRESS"
    REENTRANT_CALL = "REENTRANT_CALL"


class ProtocolError(Exception):
    pass

class ValidationError(ProtocolError, ValueError):
    pass
