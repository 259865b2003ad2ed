from ecdsa import SigningKey, VerifyingKey, SECP256k1 # type: ignore
from ecdsa.util import sigdecode_string # type: ignore
import hashlib
from typing import List, Optional

# r (32) + s (32) + recovery id (1)
SIGNATURE_LENGTH = 65

CURVE_ORDER = SECP256k1.order
HALF_CURVE_ORDER = CURVE_ORDER // 2

def generate_private_key() -> bytes:
    """Generates a random 32-byte private key on secp256k1."""
    return SigningKey.generate(curve=SECP256k1).to_string()

def public_key_from_private(priv_bytes: bytes) -> bytes:
    """Returns compressed 33-byte public key from private key."""
    sk = SigningKey.from_string(priv_bytes, curve=SECP256k1)
    vk = sk.get_verifying_key()
    return vk.to_string("compressed")

def _encode_low_s(r: int, s: int, order: int) -> bytes:
    # Only the lower half of s is accepted, (r, n - s) would otherwise be a second valid encoding
    if s > order // 2:
        s = order - s
    return r.to_bytes(32, 'big') + s.to_bytes(32, 'big')

def _recover_candidates(message_hash: bytes, rs: bytes) -> List[VerifyingKey]:
    return VerifyingKey.from_public_key_recovery_with_digest(
        rs, message_hash, curve=SECP256k1, hashfunc=hashlib.sha256, sigdecode=sigdecode_string
    )

def sign(message_hash: bytes, priv_bytes: bytes) -> bytes:
    """
    Signs a 32-byte message hash with a private key.

    Returns a 65-byte recoverable signature: r || s || v, with low s
    (RFC 6979 deterministic nonce).
    """
    sk = SigningKey.from_string(priv_bytes, curve=SECP256k1)
    rs = sk.sign_digest_deterministic(message_hash, hashfunc=hashlib.sha256, sigencode=_encode_low_s)
    own_pub = sk.get_verifying_key().to_string("compressed")

    for recovery_id, candidate in enumerate(_recover_candidates(message_hash, rs)):
        if candidate.to_string("compressed") == own_pub:
            return rs + bytes([recovery_id])

    raise ValueError("Unable to determine recovery id for signature")

def recover_public_key(message_hash: bytes, signature: bytes) -> Optional[bytes]:
    """
    Recovers the compressed public key that produced `signature` over `message_hash`.

    Returns None for any malformed signature: wrong length, unknown recovery
    id, r or s out of range, high s, or a point that cannot be recovered.
    """
    if len(signature) != SIGNATURE_LENGTH:
        return None

    rs = signature[:64]
    recovery_id = signature[64]
    if recovery_id >= 27:
        recovery_id -= 27
    if recovery_id not in (0, 1):
        return None

    r = int.from_bytes(rs[:32], 'big')
    s = int.from_bytes(rs[32:], 'big')
    if not (0 < r < CURVE_ORDER) or not (0 < s <= HALF_CURVE_ORDER):
        return None

    try:
        candidates = _recover_candidates(message_hash, rs)
    except Exception:
        return None

    if recovery_id >= len(candidates):
        return None
    return candidates[recovery_id].to_string("compressed")

def verify(message_hash: bytes, signature: bytes, pub_bytes: bytes) -> bool:
    """Verifies a recoverable signature against a known public key."""
    recovered = recover_public_key(message_hash, signature)
    return recovered is not None and recovered == pub_bytes
