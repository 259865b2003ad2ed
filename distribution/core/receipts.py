"""
Typed results returned by ledger operations.
"""
from dataclasses import dataclass, field
from typing import Optional, Dict
from protocol.types.common import ErrorCode, PoolKind


@dataclass
class ClaimResult:
    """
    Outcome of a claim.

    Attributes:
        ok: True when the claim committed
        amount: Amount transferred (0 on failure)
        claim_key: Replay key of the voucher, if it could be derived
        pool: Pool the claim targeted, if it could be parsed
        error: Error code on failure
        message: Human readable detail
    """
    ok: bool
    amount: int = 0
    claim_key: Optional[str] = None
    pool: Optional[PoolKind] = None
    error: Optional[ErrorCode] = None
    message: str = ""

    @classmethod
    def success(cls, amount: int, claim_key: str, pool: PoolKind) -> "ClaimResult":
        return cls(ok=True, amount=amount, claim_key=claim_key, pool=pool)

    @classmethod
    def failure(cls, error: ErrorCode, message: str = "",
                claim_key: Optional[str] = None, pool: Optional[PoolKind] = None) -> "ClaimResult":
        return cls(ok=False, error=error, message=message or error.value, claim_key=claim_key, pool=pool)

    def to_dict(self) -> dict:
        """Convert result to dictionary for API response."""
        return {
            "ok": self.ok,
            "amount": str(self.amount),
            "claim_key": self.claim_key,
            "pool": self.pool.label if self.pool is not None else None,
            "error": self.error.value if self.error else None,
            "message": self.message,
        }


@dataclass
class SweepResult:
    destination: str
    amount: int
    per_pool: Dict[PoolKind, int] = field(default_factory=dict)
    timestamp: int = 0

    def to_dict(self) -> dict:
        return {
            "destination": self.destination,
            "amount": str(self.amount),
            "per_pool": {pool.label: str(value) for pool, value in self.per_pool.items()},
            "timestamp": self.timestamp,
        }
