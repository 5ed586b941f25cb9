"""Pydantic models for HD wallets."""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict

from btcsim.keys.schemas import KeyMaterial


class WalletType(str, Enum):
    SOFTWARE = "software"
    HARDWARE = "hardware"
    CUSTODIAL = "custodial"
    PAPER = "paper"


class WalletTypeInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    pros: list[str]
    cons: list[str]
    storage: str
    security: str


class HDNode(KeyMaterial):
    """A node of the derivation tree: key material plus its place in the tree."""

    path: str
    role: str
    chain_code: str
    depth: int


class PathLabel(BaseModel):
    model_config = ConfigDict(frozen=True)

    segment: str
    description: str


class HDTree(BaseModel):
    model_config = ConfigDict(frozen=True)

    master: HDNode
    purpose: HDNode
    coin_type: HDNode
    account: HDNode
    external: HDNode
    internal: HDNode

    def nodes(self) -> list[HDNode]:
        return [self.master, self.purpose, self.coin_type, self.account, self.external, self.internal]


class GeneratedAddress(KeyMaterial):
    path: str
    chain: Literal["receiving", "change"]


class WatchOnlyAddress(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    path: str
    address: str
    public_key: str
    can_spend: Literal[False] = False


class WatchOnlyWallet(BaseModel):
    """Public data only; there is no field that could hold a private key."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    extended_public_key: str
    addresses: list[WatchOnlyAddress]
