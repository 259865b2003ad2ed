# MIT License
# Copyright (c) 2025 Hashborn

"""
Distribution Ledger

Owns the per-pool distribution counters, the claim record set and the
migration lock. Every public mutating operation:

1. takes the ledger lock and the re-entrancy flag,
2. reads the clock once,
3. validates without touching state,
4. persists bookkeeping, then calls the token ledger,
5. restores the stored and in-memory state if the transfer fails.

Claim flow (checks in this order):
    paused -> voucher shape -> replay -> expiry -> ledger balance -> signature
    -> launch -> claimable > 0 -> amount <= claimable -> cap -> commit
"""

import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Dict, List, Optional, Union
from pydantic import BaseModel, Field
from protocol.types.common import ErrorCode, PoolKind, PoolPhase
from protocol.types.voucher import ClaimVoucher, ClaimRecord
from protocol.crypto.addresses import decode_address, is_valid_address
from protocol.config.params import NetworkConfig, CURRENT_NETWORK
from protocol.config.economic_model import DistributionConfig, EmissionInterval
from ..storage.db import StorageDB
from ..observability.metrics import record_claim, record_rejection
from .access import AccessControl
from .accounts import TokenLedger
from .authorizer import AuthFailure, ClaimAuthorizer
from .emission import EmissionCurve
from .errors import (
    AccountingError,
    AuthorizationError,
    ConfigurationError,
    DistributionError,
    LifecycleError,
    ReentrancyError,
)
from .events import EventBus, event_bus
from .migration import MigrationLock
from .receipts import ClaimResult, SweepResult
from .vesting import VestingCurve

logger = logging.getLogger(__name__)

STATE_KEY = "ledger:state"


def _wall_clock() -> int:
    return int(time.time())


class LedgerState(BaseModel):
    """Everything the ledger persists apart from claim records."""
    launch_timestamp: int
    mining_cap: int
    referral_cap: int
    # pool label -> cumulative amount paid out
    distributed: Dict[str, int] = Field(default_factory=lambda: {p.label: 0 for p in PoolKind})
    migration: MigrationLock = Field(default_factory=MigrationLock)


class DistributionLedger:
    def __init__(self,
                 config: DistributionConfig,
                 token: TokenLedger,
                 access: AccessControl,
                 verifier_address: str,
                 launch_timestamp: int,
                 network: NetworkConfig = CURRENT_NETWORK,
                 address: Optional[str] = None,
                 db: Optional[StorageDB] = None,
                 clock: Optional[Callable[[], int]] = None,
                 events: Optional[EventBus] = None):
        """
        Args:
            config: Pool caps, emission schedule, vesting and migration parameters
            token: Token ledger holding the pre-funded allocation
            access: Owner / pause gate
            verifier_address: Address of the off-chain voucher signer
            launch_timestamp: Unix time both curves measure from
            network: Network parameters (chain id, address prefix)
            address: Address of this ledger on the token ledger
                     (defaults to the network's distribution module address)
            db: Storage for counters, migration lock and claim records
            clock: Returns the current unix time; read once per operation
            events: Event bus (defaults to the global one)

        Raises:
            ConfigurationError: On any invalid collaborator or parameter
        """
        if token is None or not isinstance(token, TokenLedger):
            raise ConfigurationError("A token ledger with balance_of/transfer is required")
        if access is None or not isinstance(access, AccessControl):
            raise ConfigurationError("An access control gate is required")

        self.config = config
        self.network = network
        self.token = token
        self.access = access
        self.db = db
        self.clock = clock or _wall_clock
        self.events = events or event_bus
        self.address = address or network.distribution_address

        prefix = network.bech32_prefix_acc
        if not is_valid_address(verifier_address, expected_prefix=prefix):
            raise ConfigurationError(f"Invalid verifier address: {verifier_address}")
        if not is_valid_address(self.address, expected_prefix=prefix):
            raise ConfigurationError(f"Invalid ledger address: {self.address}")
        if config.mining_pool_cap < 0 or config.referral_pool_cap < 0:
            raise ConfigurationError("Pool caps must be non-negative")

        try:
            self.emission = EmissionCurve(config.mining_schedule)
            self.vesting = VestingCurve(config.referral_pool_cap, config.vesting_duration)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

        if not config.schedule_matches_cap():
            logger.warning(
                f"Emission schedule total {self.emission.total()} != mining cap {config.mining_pool_cap}; "
                f"claims are bounded by the smaller of the two"
            )

        self.authorizer = ClaimAuthorizer(verifier_address, network.chain_id, self.address)

        self._lock = threading.RLock()
        self._entered = False
        # Claims committed by this instance (older ones are read from db)
        self._claims: Dict[str, ClaimRecord] = {}

        self._state = self._load_or_create_state(launch_timestamp)

    def _load_or_create_state(self, launch_timestamp: int) -> LedgerState:
        raw = self.db.get_state(STATE_KEY) if self.db is not None else None
        if raw:
            state = LedgerState.model_validate_json(raw)
            if state.launch_timestamp != launch_timestamp:
                raise ConfigurationError(
                    f"Launch timestamp {launch_timestamp} differs from deployed {state.launch_timestamp}"
                )
            if (state.mining_cap, state.referral_cap) != (self.config.mining_pool_cap, self.config.referral_pool_cap):
                raise ConfigurationError("Pool caps differ from the deployed ledger")
            logger.info(
                f"Distribution ledger loaded: launch={state.launch_timestamp}, "
                f"distributed={state.distributed}, migration_active={state.migration.active}"
            )
            return state

        now = self.clock()
        if launch_timestamp < now:
            raise ConfigurationError(f"Launch timestamp {launch_timestamp} is in the past (now {now})")

        state = LedgerState(
            launch_timestamp=launch_timestamp,
            mining_cap=self.config.mining_pool_cap,
            referral_cap=self.config.referral_pool_cap,
        )
        self._persist(state)
        logger.info(f"Distribution ledger deployed at {self.address}, launch at {launch_timestamp}")
        return state

    # --- Execution guard ---
    @contextmanager
    def _operation(self):
        """Serializes callers and rejects nested calls made during an operation."""
        with self._lock:
            if self._entered:
                raise ReentrancyError()
            self._entered = True
            try:
                yield
            finally:
                self._entered = False

    def _persist(self, state: LedgerState, claims: Optional[List[ClaimRecord]] = None,
                 removed_claims: Optional[List[str]] = None):
        if self.db is None:
            return
        rows = [(c.claim_key, c.receiver, int(c.pool), c.model_dump_json()) for c in claims or []]
        self.db.apply_batch({STATE_KEY: state.model_dump_json()}, rows, removed_claims)

    def _require_owner(self, caller: Optional[str]):
        if not self.access.is_owner(caller):
            raise AuthorizationError(ErrorCode.UNAUTHORIZED_CALLER, f"{caller} is not the owner")

    # --- Read-only views ---
    @property
    def launch_timestamp(self) -> int:
        return self._state.launch_timestamp

    @property
    def migration(self) -> MigrationLock:
        return self._state.migration.model_copy()

    @property
    def mining_schedule(self) -> List[EmissionInterval]:
        return list(self.emission.schedule)

    @property
    def vesting_duration(self) -> int:
        return self.vesting.duration

    def pool_cap(self, pool: Union[PoolKind, str, int]) -> int:
        pool = PoolKind.parse(pool)
        return self._state.mining_cap if pool == PoolKind.MINING else self._state.referral_cap

    def distributed(self, pool: Union[PoolKind, str, int]) -> int:
        return self._state.distributed[PoolKind.parse(pool).label]

    def unlocked(self, pool: Union[PoolKind, str, int], now: Optional[int] = None) -> int:
        """Cumulative amount unlocked for `pool`, using the frozen clock once migration started."""
        pool = PoolKind.parse(pool)
        now = self.clock() if now is None else now
        elapsed = self._state.migration.effective_time(now) - self._state.launch_timestamp
        if elapsed <= 0:
            return 0
        if pool == PoolKind.MINING:
            return self.emission.unlocked(elapsed)
        return self.vesting.unlocked(elapsed)

    def unlocked_mining(self, now: Optional[int] = None) -> int:
        return self.unlocked(PoolKind.MINING, now)

    def unlocked_referral(self, now: Optional[int] = None) -> int:
        return self.unlocked(PoolKind.REFERRAL, now)

    def claimable(self, pool: Union[PoolKind, str, int], now: Optional[int] = None) -> int:
        return max(0, self.unlocked(pool, now) - self.distributed(pool))

    def pool_phase(self, pool: Union[PoolKind, str, int], now: Optional[int] = None) -> PoolPhase:
        pool = PoolKind.parse(pool)
        now = self.clock() if now is None else now
        migration = self._state.migration
        if migration.swept or self.distributed(pool) >= self.pool_cap(pool):
            return PoolPhase.DRAINED
        if now <= self._state.launch_timestamp:
            return PoolPhase.BEFORE_LAUNCH
        if migration.active:
            return PoolPhase.MIGRATION_LOCKED
        return PoolPhase.ACCRUING

    def pool_info(self, pool: Union[PoolKind, str, int]) -> dict:
        pool = PoolKind.parse(pool)
        now = self.clock()
        unlocked = self.unlocked(pool, now)
        distributed = self.distributed(pool)
        return {
            "pool": pool.label,
            "cap": str(self.pool_cap(pool)),
            "unlocked": str(unlocked),
            "distributed": str(distributed),
            "claimable": str(max(0, unlocked - distributed)),
            "phase": self.pool_phase(pool, now).value,
        }

    def is_claimed(self, claim_key: str) -> bool:
        if claim_key in self._claims:
            return True
        return self.db is not None and self.db.has_claim(claim_key)

    def get_claim(self, claim_key: str) -> Optional[ClaimRecord]:
        if claim_key in self._claims:
            return self._claims[claim_key]
        if self.db is not None:
            raw = self.db.get_claim(claim_key)
            if raw:
                return ClaimRecord.model_validate_json(raw)
        return None

    def claims_for(self, receiver: str) -> List[ClaimRecord]:
        if self.db is not None:
            return [ClaimRecord.model_validate_json(raw) for raw in self.db.get_claims_by_receiver(receiver)]
        return [c for c in self._claims.values() if c.receiver == receiver]

    def export_state(self) -> dict:
        """Serializable view of persisted state (claim records excluded)."""
        return self._state.model_dump(mode="json")

    # --- Claims ---
    def claim(self,
              pool: Union[PoolKind, str, int],
              amount: int,
              valid_until: int,
              receiver: str,
              signature: Union[str, bytes],
              caller: Optional[str] = None,
              nonce: int = 0) -> ClaimResult:
        """
        Redeems a signed voucher.

        Args:
            pool: Pool the voucher draws from
            amount: Amount to transfer (minimal units)
            valid_until: Voucher expiry (unix time, inclusive)
            receiver: Address receiving the tokens (part of the signed payload)
            signature: Verifier signature over the voucher digest
            caller: Address relaying the claim, recorded as claimant
            nonce: Voucher nonce (part of the signed payload)

        Returns:
            ClaimResult; rejections are returned, never raised
        """
        try:
            with self._operation():
                result = self._claim(pool, amount, valid_until, receiver, signature, caller, nonce)
        except ReentrancyError as e:
            result = ClaimResult.failure(e.code, e.message)

        if not result.ok:
            record_rejection(result.error)
            logger.warning(f"Claim rejected ({result.error.value}): {result.message}")
            self.events.emit(
                "claim_rejected",
                pool=result.pool,
                receiver=receiver,
                amount=amount,
                error=result.error,
            )
        return result

    def _claim(self, pool, amount, valid_until, receiver, signature, caller, nonce) -> ClaimResult:
        now = self.clock()

        if self.access.is_paused():
            return ClaimResult.failure(ErrorCode.PAUSED, "Claims are paused")

        try:
            voucher = ClaimVoucher(
                receiver=receiver,
                amount=amount,
                valid_until=valid_until,
                pool=PoolKind.parse(pool),
                nonce=nonce,
            )
        except (ValueError, TypeError) as e:
            return ClaimResult.failure(ErrorCode.INVALID_VOUCHER, f"Malformed voucher: {e}")

        if not is_valid_address(voucher.receiver, expected_prefix=self.network.bech32_prefix_acc):
            return ClaimResult.failure(
                ErrorCode.INVALID_VOUCHER,
                f"Receiver {voucher.receiver} is not a {self.network.bech32_prefix_acc} address",
                pool=voucher.pool,
            )

        claim_key = self.authorizer.claim_key(voucher)
        try:
            self._validate_claim(voucher, claim_key, signature, now)
        except DistributionError as e:
            return ClaimResult.failure(e.code, e.message, claim_key=claim_key, pool=voucher.pool)

        return self._commit_claim(voucher, claim_key, signature, caller, now)

    def _validate_claim(self, voucher: ClaimVoucher, claim_key: str, signature, now: int):
        if self.is_claimed(claim_key):
            raise AuthorizationError(ErrorCode.CLAIM_ALREADY_EXISTS, f"Voucher {claim_key[:16]} already claimed")

        if self.authorizer.check_expiry(voucher, now) == AuthFailure.EXPIRED:
            raise AuthorizationError(ErrorCode.CLAIM_EXPIRED, f"Voucher expired at {voucher.valid_until} (now {now})")

        balance = self.token.balance_of(self.address)
        if balance < voucher.amount:
            raise AccountingError(ErrorCode.INSUFFICIENT_BALANCE, f"Ledger holds {balance}, voucher needs {voucher.amount}")

        auth = self.authorizer.verify(voucher, signature)
        if isinstance(auth, AuthFailure):
            raise AuthorizationError(ErrorCode.INVALID_SIGNATURE, f"Signature check failed: {auth.value}")

        if now <= self._state.launch_timestamp:
            raise LifecycleError(ErrorCode.DISTRIBUTION_NOT_STARTED, f"Distribution starts after {self._state.launch_timestamp}")

        distributed = self.distributed(voucher.pool)
        claimable = self.unlocked(voucher.pool, now) - distributed
        if claimable <= 0:
            raise AccountingError(ErrorCode.NO_REWARDS_AVAILABLE, f"Nothing claimable in {voucher.pool.label} pool")

        if voucher.amount > claimable:
            raise AccountingError(
                ErrorCode.EXCEEDS_CLAIMABLE_REWARDS,
                f"Amount {voucher.amount} exceeds claimable {claimable}"
            )

        cap = self.pool_cap(voucher.pool)
        if distributed + voucher.amount > cap:
            raise AccountingError(ErrorCode.EXCEEDS_POOL_CAP, f"Amount {voucher.amount} would exceed pool cap {cap}")

    def _commit_claim(self, voucher: ClaimVoucher, claim_key: str, signature, caller, now: int) -> ClaimResult:
        sig_hex = signature.hex() if isinstance(signature, (bytes, bytearray)) else signature
        record = ClaimRecord(
            claim_key=claim_key,
            pool=voucher.pool,
            receiver=voucher.receiver,
            amount=voucher.amount,
            claimant=caller,
            timestamp=now,
            valid_until=voucher.valid_until,
            nonce=voucher.nonce,
            signature=sig_hex,
        )

        previous = self._state
        new_state = previous.model_copy(deep=True)
        new_state.distributed[voucher.pool.label] += voucher.amount

        # Claim row and counters are stored before any token moves
        try:
            self._persist(new_state, [record])
        except Exception as e:
            logger.error(f"Could not store claim {claim_key[:16]}: {e}", exc_info=True)
            return ClaimResult.failure(ErrorCode.STORAGE_FAILED, f"Claim could not be stored: {e}",
                                       claim_key=claim_key, pool=voucher.pool)

        # Bookkeeping is visible before the transfer runs
        self._state = new_state
        self._claims[claim_key] = record

        try:
            transferred = self.token.transfer(self.address, voucher.receiver, voucher.amount)
        except Exception as e:
            logger.error(f"Token transfer raised for claim {claim_key[:16]}: {e}", exc_info=True)
            transferred = False

        if not transferred:
            try:
                self._persist(previous, removed_claims=[claim_key])
            except Exception as e:
                # Keep memory in line with storage: the voucher stays spent, nothing was paid
                logger.error(f"Could not release claim {claim_key[:16]} after failed transfer: {e}", exc_info=True)
                return ClaimResult.failure(ErrorCode.TRANSFER_FAILED,
                                           "Token transfer failed; voucher remains consumed",
                                           claim_key=claim_key, pool=voucher.pool)
            self._state = previous
            self._claims.pop(claim_key, None)
            return ClaimResult.failure(ErrorCode.TRANSFER_FAILED, "Token transfer failed",
                                       claim_key=claim_key, pool=voucher.pool)

        record_claim(voucher.pool, voucher.amount)
        logger.info(
            f"Claimed {voucher.amount} from {voucher.pool.label} pool to {voucher.receiver} "
            f"(key {claim_key[:16]}, distributed {new_state.distributed[voucher.pool.label]})"
        )
        self.events.emit(
            "claimed",
            pool=voucher.pool,
            claim_key=claim_key,
            receiver=voucher.receiver,
            amount=voucher.amount,
            claimant=caller,
            timestamp=now,
        )
        return ClaimResult.success(voucher.amount, claim_key, voucher.pool)

    # --- Admin ---
    def pause(self, caller: Optional[str]):
        with self._operation():
            self.access.pause(caller)

    def unpause(self, caller: Optional[str]):
        with self._operation():
            self.access.unpause(caller)

    def start_migration(self, caller: Optional[str], target_timestamp: int) -> MigrationLock:
        """
        Freezes the unlock clock at the current time (owner only, once).

        Args:
            caller: Address requesting the migration
            target_timestamp: Earliest time + 1 at which the sweep is allowed;
                must be at least `min_migration_delay` seconds away

        Raises:
            AuthorizationError: Caller is not the owner
            LifecycleError: Already started, or target too soon
        """
        with self._operation():
            now = self.clock()
            self._require_owner(caller)

            lock = self._state.migration.start(now, target_timestamp, self.config.min_migration_delay)
            new_state = self._state.model_copy(update={"migration": lock})
            self._persist(new_state)
            self._state = new_state

            logger.info(f"Migration started: clock frozen at {now}, sweep after {target_timestamp}")
            self.events.emit(
                "migration_started",
                lock_timestamp=lock.lock_timestamp,
                migration_timestamp=lock.migration_timestamp,
            )
            return lock.model_copy()

    def sweep_remaining(self, caller: Optional[str], destination: str) -> SweepResult:
        """
        Transfers every unlocked-but-unclaimed token out after the grace period.

        Per pool: remaining = unlocked(lock_timestamp) - distributed. Both
        pools are marked fully distributed up to their frozen unlocked amount,
        so a second call finds nothing and fails.

        Raises:
            AuthorizationError: Caller is not the owner
            DistributionError: Invalid destination
            LifecycleError: Migration not started, grace period running, nothing left
            AccountingError: Ledger balance too low, or the transfer failed
        """
        with self._operation():
            now = self.clock()
            self._require_owner(caller)

            try:
                decode_address(destination)
            except (ValueError, TypeError) as e:
                raise DistributionError(ErrorCode.INVALID_ADDRESS, f"Invalid destination: {e}") from e

            migration = self._state.migration
            migration.check_can_sweep(now)

            per_pool: Dict[PoolKind, int] = {}
            for pool in PoolKind:
                frozen = self.unlocked(pool, migration.lock_timestamp)
                per_pool[pool] = max(0, frozen - self.distributed(pool))

            total = sum(per_pool.values())
            if total == 0:
                raise LifecycleError(ErrorCode.NOTHING_TO_SWEEP, "No remaining tokens to sweep")

            balance = self.token.balance_of(self.address)
            if balance < total:
                raise AccountingError(ErrorCode.INSUFFICIENT_BALANCE, f"Ledger holds {balance}, sweep needs {total}")

            previous = self._state
            new_state = previous.model_copy(deep=True)
            for pool, amount in per_pool.items():
                new_state.distributed[pool.label] += amount
            new_state.migration = migration.mark_swept(now)

            try:
                self._persist(new_state)
            except Exception as e:
                raise DistributionError(ErrorCode.STORAGE_FAILED, f"Sweep could not be stored: {e}") from e
            self._state = new_state

            try:
                transferred = self.token.transfer(self.address, destination, total)
            except Exception as e:
                logger.error(f"Sweep transfer raised: {e}", exc_info=True)
                transferred = False

            if not transferred:
                try:
                    self._persist(previous)
                except Exception as e:
                    # The sweep stays recorded and unpaid, in memory and in storage
                    raise DistributionError(ErrorCode.STORAGE_FAILED,
                                            f"Sweep transfer failed and could not be released: {e}") from e
                self._state = previous
                raise AccountingError(ErrorCode.TRANSFER_FAILED, "Sweep transfer failed")

            result = SweepResult(destination=destination, amount=total, per_pool=per_pool, timestamp=now)
            breakdown = ", ".join(f"{p.label}={a}" for p, a in per_pool.items())
            logger.info(f"Swept {total} to {destination} ({breakdown})")
            self.events.emit(
                "remaining_swept",
                destination=destination,
                amount=total,
                per_pool=dict(per_pool),
                timestamp=now,
            )
            return result
