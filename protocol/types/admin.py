# MIT License
# Copyright (c) 2025 Hashborn

import json
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional
from ..crypto.hash import tagged_hash
from ..crypto.keys import sign as crypto_sign, recover_public_key
from ..crypto.addresses import address_from_pubkey, decode_address
from ..config.params import PROTOCOL_NAME

ADMIN_ACTIONS = ("start_migration", "sweep", "pause", "unpause")


def canonicalize_json(data: dict) -> bytes:
    """Sorted keys, no whitespace."""
    return json.dumps(data, sort_keys=True, separators=(',', ':')).encode('utf-8')


class AdminRequest(BaseModel):
    """Owner operation submitted over RPC, signed by the caller's key."""
    action: str
    params: Dict[str, Any] = Field(default_factory=dict)
    timestamp: int                      # unix time the request was signed
    signature: str = ""                 # hex, 65-byte recoverable

    def digest(self, chain_id: str, ledger_address: str) -> bytes:
        _, ledger_h20 = decode_address(ledger_address)
        payload = (
            self.action.encode("utf-8") + b"|"
            + canonicalize_json(self.params) + b"|"
            + str(self.timestamp).encode("utf-8") + b"|"
            + chain_id.encode("utf-8") + b"|"
            + ledger_h20
        )
        return tagged_hash(f"{PROTOCOL_NAME}/AdminRequest", payload)

    def sign(self, priv_key_bytes: bytes, chain_id: str, ledger_address: str):
        self.signature = crypto_sign(self.digest(chain_id, ledger_address), priv_key_bytes).hex()

    def recover_caller(self, chain_id: str, ledger_address: str, prefix: str = "wefi") -> Optional[str]:
        """Address that signed the request, or None if the signature is malformed."""
        try:
            sig_bytes = bytes.fromhex(self.signature)
        except ValueError:
            return None
        pub = recover_public_key(self.digest(chain_id, ledger_address), sig_bytes)
        if pub is None:
            return None
        return address_from_pubkey(pub, prefix=prefix)
