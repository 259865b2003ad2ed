# MIT License
# Copyright (c) 2025 Hashborn

"""
Claim voucher authorization.

Recomputes the digest the off-chain verifier signed and recovers the signer.
No state is read or written here; replay marking belongs to the ledger.
"""

import logging
from enum import Enum
from typing import Optional, Union
from protocol.types.voucher import ClaimVoucher
from protocol.crypto.keys import recover_public_key
from protocol.crypto.addresses import address_from_pubkey, decode_address

logger = logging.getLogger(__name__)


class AuthFailure(str, Enum):
    BAD_SIGNATURE = "BAD_SIGNATURE"     # malformed encoding, unrecoverable
    UNAUTHORIZED = "UNAUTHORIZED"       # valid signature, wrong signer
    EXPIRED = "EXPIRED"                 # valid_until already passed


class ClaimAuthorizer:
    def __init__(self, verifier_address: str, chain_id: str, verifying_address: str):
        """
        Args:
            verifier_address: Address of the trusted off-chain signer
            chain_id: Chain the vouchers are bound to
            verifying_address: Address of the ledger the vouchers are bound to
        """
        # Raises ValueError for malformed addresses
        self.prefix, _ = decode_address(verifier_address)
        decode_address(verifying_address)

        self.verifier_address = verifier_address
        self.chain_id = chain_id
        self.verifying_address = verifying_address

    def digest(self, voucher: ClaimVoucher) -> bytes:
        return voucher.digest(self.chain_id, self.verifying_address)

    def claim_key(self, voucher: ClaimVoucher) -> str:
        return voucher.claim_key(self.chain_id, self.verifying_address)

    @staticmethod
    def check_expiry(voucher: ClaimVoucher, now: int) -> Optional[AuthFailure]:
        """Cheap pre-check, done before any signature work."""
        if voucher.valid_until < now:
            return AuthFailure.EXPIRED
        return None

    def recover_signer(self, voucher: ClaimVoucher, signature: Union[str, bytes]) -> Union[str, AuthFailure]:
        """Returns the address that signed the voucher, or BAD_SIGNATURE."""
        if isinstance(signature, str):
            sig_hex = signature[2:] if signature.startswith("0x") else signature
            try:
                sig_bytes = bytes.fromhex(sig_hex)
            except ValueError:
                return AuthFailure.BAD_SIGNATURE
        else:
            sig_bytes = bytes(signature)

        pub = recover_public_key(self.digest(voucher), sig_bytes)
        if pub is None:
            return AuthFailure.BAD_SIGNATURE
        return address_from_pubkey(pub, prefix=self.prefix)

    def verify(self, voucher: ClaimVoucher, signature: Union[str, bytes]) -> Union[str, AuthFailure]:
        """
        Verifies a voucher signature.

        Args:
            voucher: Claim voucher as presented by the claimant
            signature: 65-byte recoverable signature (bytes or hex)

        Returns:
            The voucher receiver on success, otherwise an AuthFailure
        """
        signer = self.recover_signer(voucher, signature)
        if isinstance(signer, AuthFailure):
            logger.debug(f"Malformed voucher signature for {voucher.receiver}")
            return signer

        if signer != self.verifier_address:
            logger.debug(f"Voucher signed by {signer}, expected {self.verifier_address}")
            return AuthFailure.UNAUTHORIZED

        return voucher.receiver
