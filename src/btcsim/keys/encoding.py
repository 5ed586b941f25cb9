"""
Hashing and address encoding for simulated key material.

Produces legacy P2PKH (1...) addresses via Base58Check. The same HASH160 is
used by the script interpreter's OP_HASH160, so a locking script built from a
key's pub-key-hash is satisfied only by that key's public key.
"""

from __future__ import annotations

import hashlib

_BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
P2PKH_VERSION = b"\x00"  # Mainnet prefix


def sha256d(data: bytes) -> bytes:
    """SHA256(SHA256(data))."""
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def hash160(data: bytes) -> bytes:
    """RIPEMD160(SHA256(data))."""
    return hashlib.new("ripemd160", hashlib.sha256(data).digest()).digest()


def item_bytes(item: str) -> bytes:
    """Bytes behind a stack item: hex-decoded when it is hex, UTF-8 otherwise."""
    try:
        return bytes.fromhex(item)
    except ValueError:
        return item.encode("utf-8")


def hash160_hex(item: str) -> str:
    """HASH160 of a hex (or text) item, as hex."""
    return hash160(item_bytes(item)).hex()


def base58_encode(data: bytes) -> str:
    """Base58 encoding."""
    n = int.from_bytes(data, "big")
    result = ""
    while n > 0:
        n, remainder = divmod(n, 58)
        result = _BASE58_ALPHABET[remainder] + result
    # Preserve leading zeros
    for byte in data:
        if byte == 0:
            result = "1" + result
        else:
            break
    return result


def base58_decode(s: str) -> bytes:
    """Decode a Base58 string to bytes."""
    n = 0
    for char in s:
        idx = _BASE58_ALPHABET.find(char)
        if idx == -1:
            msg = f"Invalid Base58 character: {char}"
            raise ValueError(msg)
        n = n * 58 + idx
    result = n.to_bytes((n.bit_length() + 7) // 8, "big") if n > 0 else b""
    pad_size = 0
    for char in s:
        if char == "1":
            pad_size += 1
        else:
            break
    return b"\x00" * pad_size + result


def base58check_encode(payload: bytes) -> str:
    """Append a 4-byte double-SHA256 checksum and Base58-encode."""
    return base58_encode(payload + sha256d(payload)[:4])


def p2pkh_address(pub_key_hash: bytes) -> str:
    """20-byte pub-key-hash -> P2PKH address (Base58Check)."""
    return base58check_encode(P2PKH_VERSION + pub_key_hash)


def validate_p2pkh_address(address: str) -> bool:
    """
    Validate a mainnet P2PKH address.

    Returns:
        True if the address is well formed.

    Raises:
        ValueError: If prefix, length, alphabet or checksum is wrong.
    """
    if not address or not address.startswith("1"):
        msg = "P2PKH mainnet addresses must start with '1'"
        raise ValueError(msg)
    if not 25 <= len(address) <= 34:
        msg = "Invalid P2PKH address length"
        raise ValueError(msg)
    decoded = base58_decode(address)
    if len(decoded) != 25:
        msg = "Invalid P2PKH decoded length"
        raise ValueError(msg)
    payload, checksum = decoded[:-4], decoded[-4:]
    if checksum != sha256d(payload)[:4]:
        msg = "Invalid P2PKH address checksum"
        raise ValueError(msg)
    return True


def pub_key_hash_from_address(address: str) -> str:
    """Recover the hex pub-key-hash embedded in a P2PKH address."""
    validate_p2pkh_address(address)
    return base58_decode(address)[1:21].hex()
