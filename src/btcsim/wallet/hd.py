"""Simplified BIP32/BIP44 derivation.

Keys are derived with HMAC-SHA512 the way BIP32 does, but a child is keyed
by its full path string rather than by index arithmetic. The output is
deterministic, every path yields a distinct key, and every key is a valid
secp256k1 identity with a real P2PKH address.

Paths follow  m / purpose' / coin_type' / account' / chain / index
where chain 0 is receiving (external) and 1 is change (internal).
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
from collections.abc import Sequence

from btcsim.errors import InvalidDerivationPath
from btcsim.keys.encoding import base58_encode
from btcsim.keys.generator import key_material_from_private
from btcsim.wallet.schemas import (
    GeneratedAddress,
    HDNode,
    HDTree,
    PathLabel,
    WalletType,
    WalletTypeInfo,
    WatchOnlyAddress,
    WatchOnlyWallet,
)

logger = logging.getLogger(__name__)

MASTER_HMAC_KEY = b"Bitcoin seed"
MAX_DEPTH = 5

_SEGMENT = re.compile(r"^(\d+)('?)$")

WALLET_TYPES: dict[WalletType, WalletTypeInfo] = {
    WalletType.SOFTWARE: WalletTypeInfo(
        name="Software Wallet",
        description="App on phone/computer",
        pros=["Convenient", "Free", "Easy to use"],
        cons=["Connected to internet", "Malware risk"],
        storage="Device storage",
        security="Medium",
    ),
    WalletType.HARDWARE: WalletTypeInfo(
        name="Hardware Wallet",
        description="Physical device",
        pros=["Offline storage", "High security", "Tamper resistant"],
        cons=["Costs money", "Can be lost/damaged"],
        storage="Secure element",
        security="High",
    ),
    WalletType.CUSTODIAL: WalletTypeInfo(
        name="Custodial Wallet",
        description="Exchange holds keys",
        pros=["Easy recovery", "No responsibility", "User-friendly"],
        cons=["Not your keys", "Counterparty risk", "Can be frozen"],
        storage="Third party",
        security="Depends on provider",
    ),
    WalletType.PAPER: WalletTypeInfo(
        name="Paper Wallet",
        description="Keys printed on paper",
        pros=["Completely offline", "No electronic risk", "Free"],
        cons=["Can be lost/damaged", "Hard to use", "No backup"],
        storage="Physical paper",
        security="High if stored well",
    ),
}


def parse_path(path: str) -> list[str]:
    """Validate a derivation path and split it into segments.

    Prefixes of the full BIP44 path are allowed ("m", "m/44'", ...).
    """
    segments = path.strip().split("/")
    if segments[0] != "m":
        raise InvalidDerivationPath(path, "must start with 'm'")
    if len(segments) - 1 > MAX_DEPTH:
        raise InvalidDerivationPath(path, f"deeper than {MAX_DEPTH} levels")

    for depth, segment in enumerate(segments[1:], start=1):
        match = _SEGMENT.match(segment)
        if match is None:
            raise InvalidDerivationPath(path, f"segment '{segment}' is not a number")
        hardened = bool(match.group(2))
        if depth <= 3 and not hardened:
            raise InvalidDerivationPath(path, f"level {depth} must be hardened")
        if depth > 3 and hardened:
            raise InvalidDerivationPath(path, f"level {depth} must not be hardened")
        if depth == 4 and match.group(1) not in ("0", "1"):
            raise InvalidDerivationPath(path, "chain must be 0 (receiving) or 1 (change)")
    return segments


def describe_segment(depth: int, segment: str) -> str:
    if depth == 0:
        return "Master Key"
    if depth == 1:
        return "Purpose (BIP44)"
    if depth == 2:
        return "Coin Type (Bitcoin)"
    if depth == 3:
        account = segment.rstrip("'")
        return f"Account #{account}"
    if depth == 4:
        return "External Chain" if segment == "0" else "Internal Chain (Change)"
    return f"Address Index #{segment}"


def describe_path(path: str) -> list[PathLabel]:
    return [
        PathLabel(segment=segment, description=describe_segment(depth, segment))
        for depth, segment in enumerate(parse_path(path))
    ]


def normalise_phrase(seed_phrase: str | Sequence[str]) -> str:
    words = seed_phrase.split() if isinstance(seed_phrase, str) else list(seed_phrase)
    return " ".join(w.strip().lower() for w in words if w.strip())


def _node(digest: bytes, path: str) -> HDNode:
    keys = key_material_from_private(digest[:32])
    segments = path.split("/")
    depth = len(segments) - 1
    return HDNode(
        **keys.model_dump(),
        path=path,
        role=describe_segment(depth, segments[-1]),
        chain_code=digest[32:].hex(),
        depth=depth,
    )


def derive_master(seed_phrase: str | Sequence[str]) -> HDNode:
    """Master node from a seed phrase; the same phrase always gives the same node."""
    phrase = normalise_phrase(seed_phrase)
    if not phrase:
        msg = "Seed phrase is empty"
        raise ValueError(msg)
    digest = hmac.new(MASTER_HMAC_KEY, phrase.encode("utf-8"), hashlib.sha512).digest()
    return _node(digest, "m")


def derive_child(parent: HDNode, path: str) -> HDNode:
    parse_path(path)
    message = bytes.fromhex(parent.private_key) + path.encode("utf-8")
    digest = hmac.new(bytes.fromhex(parent.chain_code), message, hashlib.sha512).digest()
    return _node(digest, path)


def account_path(purpose: int = 44, coin_type: int = 0, account: int = 0) -> str:
    return f"m/{purpose}'/{coin_type}'/{account}'"


def build_tree(master: HDNode, purpose: int = 44, coin_type: int = 0, account: int = 0) -> HDTree:
    base = account_path(purpose, coin_type, account)
    return HDTree(
        master=master,
        purpose=derive_child(master, f"m/{purpose}'"),
        coin_type=derive_child(master, f"m/{purpose}'/{coin_type}'"),
        account=derive_child(master, base),
        external=derive_child(master, f"{base}/0"),
        internal=derive_child(master, f"{base}/1"),
    )


def derive_addresses(
    master: HDNode,
    receiving: int = 3,
    change: int = 2,
    purpose: int = 44,
    coin_type: int = 0,
    account: int = 0,
) -> list[GeneratedAddress]:
    """Receiving addresses on chain 0, then change addresses on chain 1."""
    base = account_path(purpose, coin_type, account)
    plan = [(0, "receiving", i) for i in range(receiving)] + [(1, "change", i) for i in range(change)]
    addresses = []
    for chain_index, chain, index in plan:
        node = derive_child(master, f"{base}/{chain_index}/{index}")
        addresses.append(
            GeneratedAddress(
                private_key=node.private_key,
                public_key=node.public_key,
                address=node.address,
                pub_key_hash=node.pub_key_hash,
                path=node.path,
                chain=chain,
            )
        )
    logger.debug("Derived %d receiving and %d change addresses", receiving, change)
    return addresses


def extended_private_key(node: HDNode) -> str:
    """Simulated xprv: chain code and private key, base58 encoded."""
    return "xprv" + base58_encode(bytes.fromhex(node.chain_code + node.private_key))


def extended_public_key(node: HDNode) -> str:
    """Simulated xpub: chain code and compressed public key, base58 encoded."""
    return "xpub" + base58_encode(bytes.fromhex(node.chain_code + node.public_key))


def build_watch_only(master: HDNode, addresses: Sequence[GeneratedAddress]) -> WatchOnlyWallet:
    """Strip every private key: the result can watch balances but never spend."""
    return WatchOnlyWallet(
        extended_public_key=extended_public_key(master),
        addresses=[
            WatchOnlyAddress(path=a.path, address=a.address, public_key=a.public_key)
            for a in addresses
        ],
    )
