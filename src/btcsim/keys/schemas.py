"""Pydantic models for key material and entropy."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class KeyMaterial(BaseModel):
    """One simulated identity. Hex strings throughout."""

    model_config = ConfigDict(frozen=True)

    private_key: str
    public_key: str
    address: str
    pub_key_hash: str


class Entropy(BaseModel):
    model_config = ConfigDict(frozen=True)

    bits: int
    randomness: str
