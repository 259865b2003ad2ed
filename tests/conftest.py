import os
import shutil
import tempfile
import pytest
from protocol.crypto.keys import generate_private_key, public_key_from_private
from protocol.crypto.addresses import address_from_pubkey
from protocol.config.params import NETWORKS
from protocol.config.economic_model import DistributionConfig
from protocol.types.common import PoolKind
from protocol.types.voucher import ClaimVoucher
from distribution.storage.db import StorageDB
from distribution.core.accounts import AccountState
from distribution.core.access import OwnerGate
from distribution.core.events import EventBus
from distribution.core.ledger import DistributionLedger

NETWORK = NETWORKS["devnet"]
LAUNCH = 1_700_000_000

# 10/s for 100s, then 5/s for 100s: 1500 total
TEST_CONFIG = DistributionConfig(
    mining_schedule=[(10, 100), (5, 100)],
    mining_pool_cap=1_500,
    referral_pool_cap=1_000,
    vesting_duration=1_000,
    min_migration_delay=50,
)


def new_account():
    priv = generate_private_key()
    return priv, address_from_pubkey(public_key_from_private(priv), prefix=NETWORK.bech32_prefix_acc)


class FakeClock:
    def __init__(self, now: int):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def set(self, now: int):
        self.now = now

    def advance(self, seconds: int):
        self.now += seconds


class Deployment:
    """A funded ledger on a temp sqlite db with a controllable clock."""

    def __init__(self, root_dir: str, config: DistributionConfig = TEST_CONFIG):
        self.root_dir = root_dir
        self.config = config
        self.clock = FakeClock(LAUNCH - 100)
        self.verifier_priv, self.verifier = new_account()
        self.owner_priv, self.owner = new_account()
        self.events = EventBus()
        self.db = StorageDB(os.path.join(root_dir, "ledger.db"))
        self.token = AccountState(self.db)
        self.gate = OwnerGate(self.owner, db=self.db)
        self.ledger = self.build()
        self.token.mint(self.ledger.address, config.total_allocation())

    def build(self, **overrides) -> DistributionLedger:
        kwargs = dict(
            config=self.config,
            token=self.token,
            access=self.gate,
            verifier_address=self.verifier,
            launch_timestamp=LAUNCH,
            network=NETWORK,
            db=self.db,
            clock=self.clock,
            events=self.events,
        )
        kwargs.update(overrides)
        return DistributionLedger(**kwargs)

    def voucher(self, pool, amount, receiver, valid_until=None, nonce=0, signer=None) -> dict:
        """Claim kwargs for a voucher signed by the verifier (or `signer`)."""
        if valid_until is None:
            valid_until = self.clock.now + 3_600
        voucher = ClaimVoucher(
            receiver=receiver,
            amount=amount,
            valid_until=valid_until,
            pool=PoolKind.parse(pool),
            nonce=nonce,
        )
        signature = voucher.sign(signer or self.verifier_priv, NETWORK.chain_id, self.ledger.address)
        return dict(
            pool=voucher.pool,
            amount=amount,
            valid_until=valid_until,
            receiver=receiver,
            signature=signature,
            nonce=nonce,
        )

    def snapshot(self, ledger: DistributionLedger = None) -> tuple:
        ledger = ledger or self.ledger
        return (
            ledger.export_state(),
            self.db.count_claims(),
            self.db.get_state("ledger:state"),
            self.token.balance_of(ledger.address),
        )


@pytest.fixture
def temp_dir():
    path = tempfile.mkdtemp()
    yield path
    shutil.rmtree(path)


@pytest.fixture
def env(temp_dir):
    deployment = Deployment(temp_dir)
    yield deployment
    deployment.db.close()


@pytest.fixture
def alice():
    return new_account()[1]


@pytest.fixture
def bob():
    return new_account()[1]
