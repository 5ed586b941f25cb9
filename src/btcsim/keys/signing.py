"""ECDSA signing over secp256k1 (coincurve) for simulated spends."""

from __future__ import annotations

import hashlib

from coincurve import PrivateKey, PublicKey

from btcsim.keys.schemas import KeyMaterial


def message_digest(message: str | bytes) -> bytes:
    data = message.encode("utf-8") if isinstance(message, str) else message
    return hashlib.sha256(data).digest()


def sign_digest(key: KeyMaterial, digest: bytes) -> str:
    """DER signature (hex) over a 32-byte digest."""
    if len(digest) != 32:
        msg = "Digest must be 32 bytes"
        raise ValueError(msg)
    return PrivateKey(bytes.fromhex(key.private_key)).sign(digest, hasher=None).hex()


def verify_digest(public_key_hex: str, digest: bytes, signature_hex: str) -> bool:
    """True iff the signature is valid; malformed input is simply invalid."""
    try:
        public_key = PublicKey(bytes.fromhex(public_key_hex))
        return bool(public_key.verify(bytes.fromhex(signature_hex), digest, hasher=None))
    except ValueError:
        return False
