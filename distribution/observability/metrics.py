# MIT License
# Copyright (c) 2025 Hashborn

"""
Prometheus Metrics Exporter

Exports distribution metrics in Prometheus format.

Metrics:
- Claims committed / rejected, amount claimed per pool
- Per-pool cap, unlocked and distributed amounts
- Ledger token balance, claim record count
- Migration and pause state
"""

from prometheus_client import Counter, Gauge, CollectorRegistry

# Create registry for metrics
metrics_registry = CollectorRegistry()

# ═══════════════════════════════════════════════════════════════════
# CLAIM METRICS
# ═══════════════════════════════════════════════════════════════════

claims_total = Counter(
    'wefi_claims_total',
    'Total number of committed claims',
    ['pool'],
    registry=metrics_registry
)

claims_rejected_total = Counter(
    'wefi_claims_rejected_total',
    'Total number of rejected claims',
    ['error'],
    registry=metrics_registry
)

claimed_amount_total = Counter(
    'wefi_claimed_amount_total',
    'Total amount claimed (minimal units)',
    ['pool'],
    registry=metrics_registry
)

claim_records = Gauge(
    'wefi_claim_records',
    'Number of stored claim records',
    registry=metrics_registry
)

# ═══════════════════════════════════════════════════════════════════
# POOL METRICS
# ═══════════════════════════════════════════════════════════════════

pool_cap = Gauge(
    'wefi_pool_cap',
    'Pool allocation (minimal units)',
    ['pool'],
    registry=metrics_registry
)

pool_unlocked = Gauge(
    'wefi_pool_unlocked',
    'Amount unlocked by the pool curve (minimal units)',
    ['pool'],
    registry=metrics_registry
)

pool_distributed = Gauge(
    'wefi_pool_distributed',
    'Amount distributed from the pool (minimal units)',
    ['pool'],
    registry=metrics_registry
)

ledger_balance = Gauge(
    'wefi_ledger_balance',
    'Token balance held by the distribution ledger',
    registry=metrics_registry
)

# ═══════════════════════════════════════════════════════════════════
# LIFECYCLE METRICS
# ═══════════════════════════════════════════════════════════════════

migration_active = Gauge(
    'wefi_migration_active',
    'Whether the migration lock is active (0/1)',
    registry=metrics_registry
)

claims_paused = Gauge(
    'wefi_claims_paused',
    'Whether claims are paused (0/1)',
    registry=metrics_registry
)


# ═══════════════════════════════════════════════════════════════════
# HELPER FUNCTIONS
# ═══════════════════════════════════════════════════════════════════

def record_claim(pool, amount: int):
    """Counters for a committed claim."""
    claims_total.labels(pool=pool.label).inc()
    claimed_amount_total.labels(pool=pool.label).inc(amount)


def record_rejection(error):
    claims_rejected_total.labels(error=error.value).inc()


def update_metrics(ledger):
    """
    Update gauges from ledger state.
    Called when metrics are scraped.

    Args:
        ledger: DistributionLedger instance
    """
    from protocol.types.common import PoolKind

    for pool in PoolKind:
        pool_cap.labels(pool=pool.label).set(ledger.pool_cap(pool))
        pool_unlocked.labels(pool=pool.label).set(ledger.unlocked(pool))
        pool_distributed.labels(pool=pool.label).set(ledger.distributed(pool))

    ledger_balance.set(ledger.token.balance_of(ledger.address))
    migration_active.set(1 if ledger.migration.active else 0)
    claims_paused.set(1 if ledger.access.is_paused() else 0)

    if ledger.db is not None:
        claim_records.set(ledger.db.count_claims())
    else:
        claim_records.set(len(ledger._claims))
