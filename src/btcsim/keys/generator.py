"""Key material and entropy generation.

Random bytes come from the OS CSPRNG by default; tests inject a byte source.
Everything after the random draw is deterministic.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from collections.abc import Callable, Sequence

from coincurve import PrivateKey

from btcsim.keys.encoding import hash160, p2pkh_address
from btcsim.keys.schemas import Entropy, KeyMaterial
from btcsim.keys.wordlist import WORDLIST

logger = logging.getLogger(__name__)

RandBytes = Callable[[int], bytes]

PRIVATE_KEY_BYTES = 32


def key_material_from_private(private_key: bytes) -> KeyMaterial:
    """Derive public key, pub-key-hash and address from a 32-byte secret."""
    if len(private_key) != PRIVATE_KEY_BYTES:
        msg = f"Private key must be {PRIVATE_KEY_BYTES} bytes, got {len(private_key)}"
        raise ValueError(msg)
    public_key = PrivateKey(private_key).public_key.format(compressed=True)
    pkh = hash160(public_key)
    return KeyMaterial(
        private_key=private_key.hex(),
        public_key=public_key.hex(),
        address=p2pkh_address(pkh),
        pub_key_hash=pkh.hex(),
    )


def generate_key_material(
    randbytes: RandBytes = secrets.token_bytes,
    bits: int = 256,
) -> KeyMaterial:
    """Draw `bits` of randomness and derive a fresh identity.

    Sizes other than 256 bits are stretched or compressed through SHA-256.
    """
    if bits <= 0 or bits % 8:
        msg = f"Entropy size must be a positive multiple of 8, got {bits}"
        raise ValueError(msg)
    seed = randbytes(bits // 8)
    secret = seed if len(seed) == PRIVATE_KEY_BYTES else hashlib.sha256(seed).digest()
    return key_material_from_private(secret)


def generate_entropy(bits: int = 128, randbytes: RandBytes = secrets.token_bytes) -> Entropy:
    """Raw entropy for seed phrases."""
    if bits <= 0 or bits % 8:
        msg = f"Entropy size must be a positive multiple of 8, got {bits}"
        raise ValueError(msg)
    return Entropy(bits=bits, randomness=randbytes(bits // 8).hex())


def seed_phrase_from_entropy(
    randomness: str,
    word_count: int = 12,
    wordlist: Sequence[str] = WORDLIST,
) -> list[str]:
    """Map entropy bytes onto words: byte i selects wordlist[byte % len(wordlist)].

    Missing bytes (entropy shorter than the phrase) count as zero.
    """
    data = bytes.fromhex(randomness)
    words = []
    for i in range(word_count):
        byte = data[i] if i < len(data) else 0
        words.append(wordlist[byte % len(wordlist)])
    logger.debug("Seed phrase built from %d bytes of entropy", len(data))
    return words


def random_hex_id(randbytes: RandBytes = secrets.token_bytes, size: int = 32) -> str:
    """Opaque hex identifier (UTXO ids, block hashes)."""
    return randbytes(size).hex()
