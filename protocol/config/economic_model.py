# MIT License
# Copyright (c) 2025 Hashborn

"""
WeFi Distribution Economic Model
Single source of truth for pool sizes and unlock curves.

Two pools are funded once, at deployment:
- Mining pool: piecewise-constant emission schedule (rate halves per interval)
- Referral/staking pool: linear vesting over a fixed duration

Invariant (deployment time, not enforced at runtime):
    sum(rate_i * duration_i) == mining_pool_cap
"""

from dataclasses import dataclass
from typing import List, Tuple

DECIMALS = 10**18

DAY = 86_400

# (rate in minimal units per second, duration in seconds)
EmissionInterval = Tuple[int, int]


def schedule_total(schedule: List[EmissionInterval]) -> int:
    """Total amount emitted by a schedule once every interval has elapsed."""
    return sum(rate * duration for rate, duration in schedule)


@dataclass
class DistributionConfig:
    """Distribution parameters for a network."""

    # ═══════════════════════════════════════════════════════
    # MINING POOL (emission schedule)
    # ═══════════════════════════════════════════════════════
    mining_schedule: List[EmissionInterval]
    mining_pool_cap: int

    # ═══════════════════════════════════════════════════════
    # REFERRAL / STAKING POOL (linear vesting)
    # ═══════════════════════════════════════════════════════
    referral_pool_cap: int
    vesting_duration: int               # seconds from launch to 100% unlocked

    # ═══════════════════════════════════════════════════════
    # MIGRATION
    # ═══════════════════════════════════════════════════════
    min_migration_delay: int = 7 * DAY  # grace period between lock and sweep

    def total_allocation(self) -> int:
        """Amount the ledger address must be funded with at deployment."""
        return self.mining_pool_cap + self.referral_pool_cap

    def schedule_matches_cap(self) -> bool:
        return schedule_total(self.mining_schedule) == self.mining_pool_cap


# ═══════════════════════════════════════════════════════════════════════════
# MAINNET CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════
MAINNET_SCHEDULE: List[EmissionInterval] = [
    (8 * DECIMALS, 180 * DAY),    # 8 tokens/s for ~6 months
    (4 * DECIMALS, 180 * DAY),    # 4 tokens/s for ~6 months
    (2 * DECIMALS, 365 * DAY),    # 2 tokens/s for 1 year
    (1 * DECIMALS, 730 * DAY),    # 1 token/s for 2 years
]

MINING_REWARDS_POOL = 312_768_000 * DECIMALS
REFERRAL_STAKING_POOL = 100_000_000 * DECIMALS

MAINNET = DistributionConfig(
    mining_schedule=MAINNET_SCHEDULE,
    mining_pool_cap=MINING_REWARDS_POOL,
    referral_pool_cap=REFERRAL_STAKING_POOL,
    vesting_duration=730 * DAY,
    min_migration_delay=7 * DAY,
)


# ═══════════════════════════════════════════════════════════════════════════
# TESTNET CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════
TESTNET = DistributionConfig(
    mining_schedule=list(MAINNET_SCHEDULE),
    mining_pool_cap=MINING_REWARDS_POOL,
    referral_pool_cap=REFERRAL_STAKING_POOL,
    vesting_duration=730 * DAY,
    min_migration_delay=1 * DAY,
)


# ═══════════════════════════════════════════════════════════════════════════
# DEVNET CONFIGURATION (compressed timeline)
# ═══════════════════════════════════════════════════════════════════════════
DEVNET = DistributionConfig(
    mining_schedule=[
        (8 * DECIMALS, 1 * DAY),
        (4 * DECIMALS, 1 * DAY),
        (2 * DECIMALS, 2 * DAY),
        (1 * DECIMALS, 4 * DAY),
    ],
    mining_pool_cap=1_728_000 * DECIMALS,
    referral_pool_cap=1_000_000 * DECIMALS,
    vesting_duration=7 * DAY,
    min_migration_delay=3_600,
)


CONFIGS = {
    "devnet": DEVNET,
    "testnet": TESTNET,
    "mainnet": MAINNET,
}
