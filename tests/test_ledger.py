import sqlite3
import bech32
import pytest
from protocol.crypto.keys import CURVE_ORDER
from protocol.crypto.addresses import decode_address
from protocol.config.economic_model import DistributionConfig
from protocol.types.common import ErrorCode, PoolKind, PoolPhase
from distribution.core.accounts import AccountState
from distribution.core.access import OwnerGate
from distribution.core.errors import AuthorizationError, ConfigurationError
from conftest import LAUNCH, TEST_CONFIG, Deployment, new_account


class StubToken:
    """Token ledger double with a fixed balance and a scripted transfer result."""

    def __init__(self, balance: int, result=True):
        self.balance = balance
        self.result = result
        self.transfers = []

    def balance_of(self, address: str) -> int:
        return self.balance

    def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        self.transfers.append((sender, recipient, amount))
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


class ReentrantToken:
    """Forwards to a real token but calls back into the ledger during transfer."""

    def __init__(self, inner: AccountState):
        self.inner = inner
        self.ledger = None
        self.pending = None
        self.nested_results = []
        self.distributed_seen = []

    def balance_of(self, address: str) -> int:
        return self.inner.balance_of(address)

    def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        self.distributed_seen.append(self.ledger.distributed(PoolKind.MINING))
        if self.pending is not None:
            claim, self.pending = self.pending, None
            self.nested_results.append(self.ledger.claim(**claim))
        return self.inner.transfer(sender, recipient, amount)


# --- Happy path ---

def test_claim_transfers_and_records(env, alice):
    env.clock.set(LAUNCH + 50)
    relayer = new_account()[1]
    events = []
    env.events.subscribe("claimed", lambda **data: events.append(data))

    result = env.ledger.claim(**env.voucher("mining", 300, alice), caller=relayer)

    assert result.ok
    assert result.amount == 300
    assert result.pool == PoolKind.MINING
    assert env.token.balance_of(alice) == 300
    assert env.ledger.distributed(PoolKind.MINING) == 300
    assert env.ledger.claimable(PoolKind.MINING) == 200
    assert env.ledger.is_claimed(result.claim_key)

    record = env.ledger.get_claim(result.claim_key)
    assert record.receiver == alice
    assert record.claimant == relayer
    assert record.timestamp == LAUNCH + 50
    assert [r.claim_key for r in env.ledger.claims_for(alice)] == [result.claim_key]

    assert len(events) == 1
    assert events[0]["amount"] == 300 and events[0]["receiver"] == alice


def test_referral_pool_vests_linearly(env, alice):
    env.clock.set(LAUNCH + 500)
    assert env.ledger.unlocked_referral() == 500

    result = env.ledger.claim(**env.voucher(PoolKind.REFERRAL, 500, alice))
    assert result.ok
    assert env.ledger.distributed("referral") == 500
    assert env.ledger.distributed("mining") == 0


def test_views_are_zero_before_launch(env):
    assert env.ledger.unlocked_mining() == 0
    assert env.ledger.unlocked_referral() == 0
    assert env.ledger.claimable(PoolKind.MINING) == 0
    assert env.ledger.pool_phase(PoolKind.MINING) == PoolPhase.BEFORE_LAUNCH

    env.clock.set(LAUNCH)
    assert env.ledger.unlocked_mining() == 0
    env.clock.set(LAUNCH + 1)
    assert env.ledger.unlocked_mining() == 10
    assert env.ledger.pool_phase(PoolKind.MINING) == PoolPhase.ACCRUING


def test_identical_vouchers_with_distinct_nonces(env, alice):
    env.clock.set(LAUNCH + 50)
    first = env.ledger.claim(**env.voucher("mining", 100, alice, nonce=1))
    second = env.ledger.claim(**env.voucher("mining", 100, alice, nonce=2))

    assert first.ok and second.ok
    assert first.claim_key != second.claim_key
    assert env.token.balance_of(alice) == 200


def test_expiry_is_inclusive(env, alice):
    env.clock.set(LAUNCH + 50)
    assert env.ledger.claim(**env.voucher("mining", 10, alice, valid_until=LAUNCH + 50)).ok


# --- Rejections, in check order ---

def test_paused_rejects_before_anything_else(env, alice):
    env.clock.set(LAUNCH + 50)
    env.ledger.pause(env.owner)

    result = env.ledger.claim(pool="nope", amount=0, valid_until=0, receiver="bad", signature="")
    assert result.error == ErrorCode.PAUSED

    env.ledger.unpause(env.owner)
    assert env.ledger.claim(**env.voucher("mining", 10, alice)).ok


def test_pause_requires_owner(env, alice):
    with pytest.raises(AuthorizationError) as exc:
        env.ledger.pause(alice)
    assert exc.value.code == ErrorCode.UNAUTHORIZED_CALLER
    assert not env.gate.is_paused()


@pytest.mark.parametrize("overrides", [
    {"pool": "staking"},
    {"amount": 0},
    {"amount": -5},
    {"receiver": "wefi1notanaddress"},
    {"valid_until": -1},
])
def test_malformed_voucher(env, alice, overrides):
    env.clock.set(LAUNCH + 50)
    claim = env.voucher("mining", 10, alice)
    claim.update(overrides)

    before = env.snapshot()
    result = env.ledger.claim(**claim)
    assert result.error == ErrorCode.INVALID_VOUCHER
    assert env.snapshot() == before


def with_prefix(address: str, prefix: str) -> str:
    """Same 20-byte account hash encoded under another bech32 prefix."""
    _, h20 = decode_address(address)
    return bech32.bech32_encode(prefix, bech32.convertbits(h20, 8, 5))


def test_receiver_prefix_cannot_be_swapped(env, alice):
    env.clock.set(LAUNCH + 50)
    claim = env.voucher("mining", 50, alice)
    relayed = dict(claim, receiver=with_prefix(alice, "evil"))

    before = env.snapshot()
    result = env.ledger.claim(**relayed)
    assert result.error == ErrorCode.INVALID_VOUCHER
    assert env.token.balance_of(relayed["receiver"]) == 0
    assert env.snapshot() == before

    legit = env.ledger.claim(**claim)
    assert legit.ok
    assert env.token.balance_of(alice) == 50


def test_voucher_for_foreign_prefix_receiver_is_rejected(env, alice):
    env.clock.set(LAUNCH + 50)
    result = env.ledger.claim(**env.voucher("mining", 50, with_prefix(alice, "cosmos")))
    assert result.error == ErrorCode.INVALID_VOUCHER
    assert env.ledger.distributed(PoolKind.MINING) == 0


def test_replay_is_rejected(env, alice):
    env.clock.set(LAUNCH + 50)
    claim = env.voucher("mining", 100, alice)
    assert env.ledger.claim(**claim).ok

    before = env.snapshot()
    replay = env.ledger.claim(**claim)
    assert replay.error == ErrorCode.CLAIM_ALREADY_EXISTS
    assert env.snapshot() == before
    assert env.token.balance_of(alice) == 100


def test_replay_with_malleated_signature_is_rejected(env, alice):
    env.clock.set(LAUNCH + 50)
    claim = env.voucher("mining", 100, alice)
    assert env.ledger.claim(**claim).ok

    sig = bytes.fromhex(claim["signature"])
    s = int.from_bytes(sig[32:64], "big")
    claim["signature"] = (sig[:32] + (CURVE_ORDER - s).to_bytes(32, "big") + bytes([sig[64] ^ 1])).hex()

    assert env.ledger.claim(**claim).error == ErrorCode.CLAIM_ALREADY_EXISTS
    assert env.ledger.distributed(PoolKind.MINING) == 100


def test_expired_voucher(env, alice):
    env.clock.set(LAUNCH + 50)
    claim = env.voucher("mining", 10, alice, valid_until=LAUNCH + 49)
    assert env.ledger.claim(**claim).error == ErrorCode.CLAIM_EXPIRED


def test_insufficient_balance_checked_before_signature(temp_dir, alice):
    deployment = Deployment(temp_dir)
    try:
        ledger = deployment.build(token=StubToken(balance=5))
        deployment.ledger = ledger
        deployment.clock.set(LAUNCH + 50)
        other_priv, _ = new_account()

        claim = deployment.voucher("mining", 10, alice, signer=other_priv)
        assert ledger.claim(**claim).error == ErrorCode.INSUFFICIENT_BALANCE
    finally:
        deployment.db.close()


@pytest.mark.parametrize("signature", ["", "0x1234", "not-hex", "11" * 65])
def test_invalid_signature_encodings(env, alice, signature):
    env.clock.set(LAUNCH + 50)
    claim = env.voucher("mining", 10, alice)
    claim["signature"] = signature
    assert env.ledger.claim(**claim).error == ErrorCode.INVALID_SIGNATURE


def test_voucher_from_wrong_signer(env, alice):
    env.clock.set(LAUNCH + 50)
    other_priv, _ = new_account()
    before = env.snapshot()
    result = env.ledger.claim(**env.voucher("mining", 10, alice, signer=other_priv))
    assert result.error == ErrorCode.INVALID_SIGNATURE
    assert env.snapshot() == before


def test_tampered_amount(env, alice):
    env.clock.set(LAUNCH + 50)
    claim = env.voucher("mining", 10, alice)
    claim["amount"] = 400
    assert env.ledger.claim(**claim).error == ErrorCode.INVALID_SIGNATURE


def test_claim_before_launch(env, alice):
    env.clock.set(LAUNCH)
    result = env.ledger.claim(**env.voucher("mining", 10, alice))
    assert result.error == ErrorCode.DISTRIBUTION_NOT_STARTED


def test_over_claim_leaves_distributed_unchanged(env, alice):
    env.clock.set(LAUNCH + 50)
    assert env.ledger.claim(**env.voucher("mining", 400, alice)).ok

    before = env.snapshot()
    result = env.ledger.claim(**env.voucher("mining", 101, alice))
    assert result.error == ErrorCode.EXCEEDS_CLAIMABLE_REWARDS
    assert env.ledger.distributed(PoolKind.MINING) == 400
    assert env.snapshot() == before


def test_nothing_claimable(env, alice):
    env.clock.set(LAUNCH + 10)
    assert env.ledger.claim(**env.voucher("mining", 100, alice)).ok
    result = env.ledger.claim(**env.voucher("mining", 1, alice, nonce=1))
    assert result.error == ErrorCode.NO_REWARDS_AVAILABLE


def test_pool_cap_bounds_a_schedule_larger_than_the_cap(temp_dir, alice):
    config = DistributionConfig(
        mining_schedule=[(10, 100), (5, 100)],
        mining_pool_cap=1_000,
        referral_pool_cap=1_000,
        vesting_duration=1_000,
        min_migration_delay=50,
    )
    deployment = Deployment(temp_dir, config=config)
    try:
        deployment.clock.set(LAUNCH + 200)
        ledger = deployment.ledger
        result = ledger.claim(**deployment.voucher("mining", 1_200, alice))
        assert result.error == ErrorCode.EXCEEDS_POOL_CAP

        assert ledger.claim(**deployment.voucher("mining", 1_000, alice)).ok
        assert ledger.pool_phase(PoolKind.MINING) == PoolPhase.DRAINED
        assert ledger.claim(**deployment.voucher("mining", 1, alice, nonce=1)).error == ErrorCode.EXCEEDS_POOL_CAP
    finally:
        deployment.db.close()


def test_cap_safety_over_claim_sequence(env, alice, bob):
    total = 0
    nonce = 0
    for step in range(0, 260, 13):
        env.clock.set(LAUNCH + 1 + step)
        claimable = env.ledger.claimable(PoolKind.MINING)
        if claimable > 0:
            nonce += 1
            receiver = alice if nonce % 2 else bob
            assert env.ledger.claim(**env.voucher("mining", claimable, receiver, nonce=nonce)).ok
            total += claimable
        assert env.ledger.distributed(PoolKind.MINING) <= env.ledger.unlocked_mining()
        assert env.ledger.distributed(PoolKind.MINING) <= TEST_CONFIG.mining_pool_cap

    assert total == TEST_CONFIG.mining_pool_cap
    assert env.token.balance_of(alice) + env.token.balance_of(bob) == total
    assert env.ledger.claim(**env.voucher("mining", 1, alice, nonce=999)).error == ErrorCode.NO_REWARDS_AVAILABLE


# --- Transfer failure and re-entrancy ---

@pytest.mark.parametrize("outcome", [False, RuntimeError("token ledger down")])
def test_transfer_failure_rolls_back(temp_dir, alice, outcome):
    deployment = Deployment(temp_dir)
    try:
        token = StubToken(balance=10_000, result=outcome)
        ledger = deployment.build(token=token)
        deployment.ledger = ledger
        deployment.clock.set(LAUNCH + 50)

        before = deployment.snapshot()
        claim = deployment.voucher("mining", 100, alice)
        result = ledger.claim(**claim)

        assert result.error == ErrorCode.TRANSFER_FAILED
        assert token.transfers == [(ledger.address, alice, 100)]
        assert ledger.distributed(PoolKind.MINING) == 0
        assert not ledger.is_claimed(result.claim_key)
        assert deployment.snapshot() == before

        # The same voucher is still redeemable once the token ledger recovers
        token.result = True
        assert ledger.claim(**claim).ok
    finally:
        deployment.db.close()


def test_nested_claim_during_transfer_is_rejected(env, alice, bob):
    token = ReentrantToken(env.token)
    ledger = env.build(token=token)
    token.ledger = ledger
    env.ledger = ledger
    env.clock.set(LAUNCH + 50)

    token.pending = env.voucher("mining", 100, bob)
    result = ledger.claim(**env.voucher("mining", 300, alice))

    assert result.ok
    assert [r.error for r in token.nested_results] == [ErrorCode.REENTRANT_CALL]
    # Bookkeeping was already committed when the transfer ran
    assert token.distributed_seen == [300]
    assert env.token.balance_of(bob) == 0
    assert ledger.distributed(PoolKind.MINING) == 300

    # The guard is released afterwards
    assert ledger.claim(**env.voucher("mining", 100, bob)).ok


# --- Storage failures ---

def failing_batches(db, passing: int = 0):
    """Replacement for db.apply_batch that lets `passing` writes through, then fails."""
    real = db.apply_batch
    calls = []

    def apply_batch(*args, **kwargs):
        calls.append(args)
        if len(calls) > passing:
            raise sqlite3.OperationalError("database or disk is full")
        return real(*args, **kwargs)
    return apply_batch


def test_storage_failure_moves_no_tokens(env, alice, monkeypatch):
    env.clock.set(LAUNCH + 50)
    claim = env.voucher("mining", 50, alice)
    before = env.snapshot()

    monkeypatch.setattr(env.db, "apply_batch", failing_batches(env.db))
    result = env.ledger.claim(**claim)
    monkeypatch.undo()

    assert result.error == ErrorCode.STORAGE_FAILED
    assert env.token.balance_of(alice) == 0
    assert not env.ledger.is_claimed(result.claim_key)
    assert env.snapshot() == before

    # After a restart the voucher is honored exactly once
    reloaded = env.build()
    env.ledger = reloaded
    assert reloaded.claim(**claim).ok
    assert reloaded.claim(**claim).error == ErrorCode.CLAIM_ALREADY_EXISTS
    assert env.token.balance_of(alice) == 50


def test_voucher_stays_consumed_when_release_fails(temp_dir, alice, monkeypatch):
    deployment = Deployment(temp_dir)
    try:
        token = StubToken(balance=10_000, result=False)
        ledger = deployment.build(token=token)
        deployment.ledger = ledger
        deployment.clock.set(LAUNCH + 50)
        claim = deployment.voucher("mining", 100, alice)

        # The claim write succeeds, the release after the failed transfer does not
        monkeypatch.setattr(deployment.db, "apply_batch", failing_batches(deployment.db, passing=1))
        result = ledger.claim(**claim)
        monkeypatch.undo()

        assert result.error == ErrorCode.TRANSFER_FAILED
        assert ledger.is_claimed(result.claim_key)
        assert ledger.distributed(PoolKind.MINING) == 100

        reloaded = deployment.build()
        deployment.ledger = reloaded
        assert reloaded.claim(**claim).error == ErrorCode.CLAIM_ALREADY_EXISTS
        assert deployment.token.balance_of(alice) == 0
    finally:
        deployment.db.close()


# --- Persistence and construction ---

def test_state_survives_reload(env, alice):
    env.clock.set(LAUNCH + 50)
    claim = env.voucher("mining", 250, alice)
    result = env.ledger.claim(**claim)
    assert result.ok

    reloaded = env.build()
    env.ledger = reloaded
    assert reloaded.distributed(PoolKind.MINING) == 250
    assert reloaded.is_claimed(result.claim_key)
    assert reloaded.get_claim(result.claim_key).amount == 250

    assert reloaded.claim(**claim).error == ErrorCode.CLAIM_ALREADY_EXISTS
    assert reloaded.claim(**env.voucher("mining", 250, alice, nonce=1)).ok
    assert reloaded.claimable(PoolKind.MINING) == 0


def test_reload_rejects_a_different_launch(env):
    with pytest.raises(ConfigurationError):
        env.build(launch_timestamp=LAUNCH + 1)


def test_reload_rejects_different_caps(env):
    config = DistributionConfig(
        mining_schedule=TEST_CONFIG.mining_schedule,
        mining_pool_cap=TEST_CONFIG.mining_pool_cap,
        referral_pool_cap=TEST_CONFIG.referral_pool_cap + 1,
        vesting_duration=TEST_CONFIG.vesting_duration,
    )
    with pytest.raises(ConfigurationError):
        env.build(config=config)


def test_launch_in_the_past_is_rejected(temp_dir):
    deployment = Deployment(temp_dir)
    try:
        with pytest.raises(ConfigurationError):
            deployment.build(db=None, launch_timestamp=deployment.clock.now - 1)
        # launch == now is an immediate start
        assert deployment.build(db=None, launch_timestamp=deployment.clock.now)
    finally:
        deployment.db.close()


@pytest.mark.parametrize("overrides", [
    {"verifier_address": "not-an-address"},
    {"verifier_address": "cosmos1qypqxpq9qcrsszg2pvxq6rs0zqg3yyc5lzv7xu"},
    {"token": None},
    {"access": None},
    {"config": DistributionConfig([(10, 100)], 1_000, 1_000, vesting_duration=0)},
    {"config": DistributionConfig([(10, 0)], 1_000, 1_000, vesting_duration=10)},
])
def test_invalid_configuration(env, overrides):
    with pytest.raises(ConfigurationError):
        env.build(**dict(overrides, db=None))


def test_owner_gate_persists_pause(env):
    env.ledger.pause(env.owner)
    assert OwnerGate(env.owner, db=env.db).is_paused()
    env.ledger.unpause(env.owner)
    assert not OwnerGate(env.owner, db=env.db).is_paused()


def test_pool_info_serializes_amounts(env):
    env.clock.set(LAUNCH + 50)
    info = env.ledger.pool_info("mining")
    assert info == {
        "pool": "mining",
        "cap": "1500",
        "unlocked": "500",
        "distributed": "0",
        "claimable": "500",
        "phase": "ACCRUING",
    }


def test_failing_listener_does_not_undo_claim(env, alice):
    def broken(**data):
        raise RuntimeError("listener bug")

    seen = []
    env.events.subscribe("claimed", broken)
    env.events.subscribe("claim_rejected", lambda **data: seen.append(data["error"]))
    env.clock.set(LAUNCH + 50)

    assert env.ledger.claim(**env.voucher("mining", 10, alice)).ok
    assert env.token.balance_of(alice) == 10

    env.events.unsubscribe("claimed", broken)
    env.ledger.claim(**env.voucher("mining", 1_000, alice))
    assert seen == [ErrorCode.EXCEEDS_CLAIMABLE_REWARDS]

    env.events.clear()
    assert env.events.listeners == {}
