# MIT License
# Copyright (c) 2025 Hashborn

from pydantic import BaseModel, Field, field_validator
from typing import Optional
from ..crypto.hash import sha256, tagged_hash
from ..crypto.addresses import decode_address
from ..crypto.keys import sign as crypto_sign
from ..config.params import PROTOCOL_NAME, PROTOCOL_VERSION
from .common import PoolKind

UINT256_LIMIT = 2**256

# EIP-712 style prefix in front of (domain separator, struct hash)
DIGEST_PREFIX = b"\x19\x01"


def _uint256(value: int) -> bytes:
    return value.to_bytes(32, "big")

def _length_prefixed(text: str) -> bytes:
    raw = text.encode("utf-8")
    return len(raw).to_bytes(2, "big") + raw


def domain_separator(chain_id: str, verifying_address: str) -> bytes:
    """
    Binds voucher signatures to one ledger instance on one chain.

    A voucher signed for testnet, or for another deployment of the ledger,
    recovers to a different signer and is rejected.
    """
    _, ledger_h20 = decode_address(verifying_address)
    payload = (
        _length_prefixed(PROTOCOL_NAME)
        + _length_prefixed(PROTOCOL_VERSION)
        + _length_prefixed(chain_id)
        + ledger_h20
    )
    return tagged_hash(f"{PROTOCOL_NAME}/Domain", payload)


class ClaimVoucher(BaseModel):
    """Claim authorization issued and signed off-chain by the verifier."""
    receiver: str                                           # bech32 address receiving the tokens
    amount: int = Field(gt=0, lt=UINT256_LIMIT)             # minimal units
    valid_until: int = Field(ge=0, lt=UINT256_LIMIT)        # unix time, inclusive
    pool: PoolKind
    nonce: int = Field(default=0, ge=0, lt=UINT256_LIMIT)   # distinguishes otherwise identical vouchers

    @field_validator("receiver")
    @classmethod
    def _check_receiver(cls, value: str) -> str:
        decode_address(value)
        return value

    def struct_hash(self) -> bytes:
        # receiver(len-prefixed bech32 string) | amount(32) | valid_until(32) | pool(1) | nonce(32)
        # The full address string is signed so the prefix cannot be swapped.
        encoded = (
            _length_prefixed(self.receiver)
            + _uint256(self.amount)
            + _uint256(self.valid_until)
            + bytes([int(self.pool)])
            + _uint256(self.nonce)
        )
        return tagged_hash(f"{PROTOCOL_NAME}/ClaimVoucher", encoded)

    def digest(self, chain_id: str, verifying_address: str) -> bytes:
        """The 32-byte message the verifier signs."""
        return sha256(DIGEST_PREFIX + domain_separator(chain_id, verifying_address) + self.struct_hash())

    def claim_key(self, chain_id: str, verifying_address: str) -> str:
        """Replay-protection key: hex of the voucher digest."""
        return self.digest(chain_id, verifying_address).hex()

    def sign(self, priv_key_bytes: bytes, chain_id: str, verifying_address: str) -> str:
        """Signs the voucher digest; returns the 65-byte signature as hex."""
        return crypto_sign(self.digest(chain_id, verifying_address), priv_key_bytes).hex()


class ClaimRecord(BaseModel):
    """Persisted for every honored voucher, keyed by claim_key."""
    claim_key: str
    pool: PoolKind
    receiver: str
    amount: int
    claimant: Optional[str] = None    # relayer that submitted the claim, if known
    timestamp: int                    # ledger time of the claim
    valid_until: int
    nonce: int = 0
    signature: str = ""
