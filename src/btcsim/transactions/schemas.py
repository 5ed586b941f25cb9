"""Pydantic models for UTXOs, transactions and blocks."""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from btcsim.script.schemas import Script

SATOSHI = Decimal("0.00000001")


def to_btc(value: Decimal | float | int | str) -> Decimal:
    """Quantise an amount to whole satoshis."""
    return Decimal(str(value)).quantize(SATOSHI)


def canonical_json(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)


class UTXO(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    owner_address: str
    amount: Decimal
    spent: bool = False
    locking_script: Script
    pub_key_hash: str

    @field_validator("amount")
    @classmethod
    def quantise_amount(cls, value: Decimal) -> Decimal:
        return to_btc(value)


class TxInput(BaseModel):
    model_config = ConfigDict(frozen=True)

    previous_utxo_id: str
    amount: Decimal
    locking_script: Script

    @field_validator("amount")
    @classmethod
    def quantise_amount(cls, value: Decimal) -> Decimal:
        return to_btc(value)


class TxOutput(BaseModel):
    model_config = ConfigDict(frozen=True)

    address: str
    amount: Decimal
    locking_script: Script

    @field_validator("amount")
    @classmethod
    def quantise_amount(cls, value: Decimal) -> Decimal:
        return to_btc(value)


class Transaction(BaseModel):
    """Immutable once built. Inputs always equal outputs plus fee."""

    model_config = ConfigDict(frozen=True)

    id: str = ""
    inputs: list[TxInput]
    outputs: list[TxOutput]
    fee: Decimal
    timestamp: int

    @field_validator("fee")
    @classmethod
    def quantise_fee(cls, value: Decimal) -> Decimal:
        return to_btc(value)

    @model_validator(mode="after")
    def check_conservation(self) -> Transaction:
        total_in = sum((i.amount for i in self.inputs), Decimal(0))
        total_out = sum((o.amount for o in self.outputs), Decimal(0))
        if total_in != total_out + self.fee:
            msg = f"Inputs ({total_in}) must equal outputs ({total_out}) plus fee ({self.fee})"
            raise ValueError(msg)
        return self

    @property
    def total_input(self) -> Decimal:
        return sum((i.amount for i in self.inputs), Decimal(0))

    @property
    def total_output(self) -> Decimal:
        return sum((o.amount for o in self.outputs), Decimal(0))

    def body(self) -> dict[str, Any]:
        """Everything except the id, as JSON-friendly data."""
        return {
            "inputs": [
                {"previous_utxo_id": i.previous_utxo_id, "amount": str(i.amount)} for i in self.inputs
            ],
            "outputs": [
                {"address": o.address, "amount": str(o.amount), "locking_script": o.locking_script.render()}
                for o in self.outputs
            ],
            "fee": str(self.fee),
            "timestamp": self.timestamp,
        }

    def signing_hash(self) -> bytes:
        return hashlib.sha256(canonical_json(self.body()).encode("utf-8")).digest()

    def compute_id(self) -> str:
        return hashlib.sha256(hashlib.sha256(canonical_json(self.body()).encode("utf-8")).digest()).hexdigest()


class InputSelection(BaseModel):
    model_config = ConfigDict(frozen=True)

    selected: list[UTXO]
    total: Decimal


class TransactionSignature(BaseModel):
    """Spend authorisation kept next to (not inside) a transaction."""

    model_config = ConfigDict(frozen=True)

    transaction_id: str
    signature: str
    public_key: str
    unlocking_script: Script
    locking_script: Script


class MempoolEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    transaction: Transaction
    signature: TransactionSignature
    status: Literal["unconfirmed", "confirmed"] = "unconfirmed"


class Block(BaseModel):
    model_config = ConfigDict(frozen=True)

    number: int
    previous_hash: str
    merkle_root: str
    transactions: list[Transaction]
    mined_by: str
    nonce: int
    timestamp: int

    @property
    def transaction_ids(self) -> set[str]:
        return {tx.id for tx in self.transactions}

    def header(self) -> dict[str, Any]:
        return {
            "number": self.number,
            "previous_hash": self.previous_hash,
            "merkle_root": self.merkle_root,
            "nonce": self.nonce,
            "timestamp": self.timestamp,
        }

    def block_hash(self) -> str:
        """Double SHA-256 of the header."""
        return hashlib.sha256(hashlib.sha256(canonical_json(self.header()).encode("utf-8")).digest()).hexdigest()
