import bech32 # type: ignore
from .hash import sha256
from typing import Tuple, Optional

ADDRESS_LENGTH = 20

def _encode(h20: bytes, prefix: str) -> str:
    # Convert to 5-bit words
    five_bit_r = bech32.convertbits(h20, 8, 5)
    if five_bit_r is None:
        raise ValueError("Error converting to bech32 words")

    return bech32.bech32_encode(prefix, five_bit_r)

def address_from_pubkey(pub_bytes: bytes, prefix: str = "wefi") -> str:
    """Creates Bech32 address from public key (last 20 bytes of its SHA256)."""
    return _encode(sha256(pub_bytes)[-ADDRESS_LENGTH:], prefix)

def module_address(name: str, prefix: str = "wefi") -> str:
    """Deterministic keyless address for a protocol module (e.g. the distribution ledger)."""
    return _encode(sha256(f"module:{name}".encode("utf-8"))[-ADDRESS_LENGTH:], prefix)

def decode_address(addr: str) -> Tuple[str, bytes]:
    """Decodes Bech32 address to (prefix, h20_bytes)."""
    hrp, data = bech32.bech32_decode(addr)
    if hrp is None or data is None:
        raise ValueError("Invalid bech32 address")

    decoded = bech32.convertbits(data, 5, 8, False)
    if decoded is None:
        raise ValueError("Error converting from bech32 words")
    if len(decoded) != ADDRESS_LENGTH:
        raise ValueError(f"Invalid address length: {len(decoded)} bytes")

    return hrp, bytes(decoded)

def is_valid_address(addr: str, expected_prefix: Optional[str] = None) -> bool:
    try:
        hrp, _ = decode_address(addr)
        if expected_prefix and hrp != expected_prefix:
            return False
        return True
    except (ValueError, TypeError):
        return False
