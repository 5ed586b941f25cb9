"""UTXO selection, transaction assembly, signing and ledger updates."""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Iterable
from decimal import Decimal

from btcsim.errors import InsufficientFunds, InvalidAddress, UTXOAlreadySpent
from btcsim.keys.encoding import pub_key_hash_from_address, sha256d, validate_p2pkh_address
from btcsim.keys.generator import RandBytes, generate_key_material, random_hex_id
from btcsim.keys.schemas import KeyMaterial
from btcsim.keys.signing import sign_digest, verify_digest
from btcsim.script.interpreter import p2pkh_locking_script, p2pkh_unlocking_script
from btcsim.transactions.schemas import (
    UTXO,
    InputSelection,
    Transaction,
    TransactionSignature,
    TxInput,
    TxOutput,
    to_btc,
)

logger = logging.getLogger(__name__)


def make_utxo(owner: KeyMaterial, amount: Decimal | float | str, utxo_id: str) -> UTXO:
    """A fresh unspent output locked to `owner`."""
    return UTXO(
        id=utxo_id,
        owner_address=owner.address,
        amount=to_btc(amount),
        locking_script=p2pkh_locking_script(owner.pub_key_hash),
        pub_key_hash=owner.pub_key_hash,
    )


def select_inputs(
    utxos: Iterable[UTXO],
    target: Decimal,
    owner_address: str | None = None,
) -> InputSelection:
    """First-fit selection: take unspent UTXOs in order until the target is covered.

    Raises InsufficientFunds if every eligible UTXO together falls short.
    """
    target = to_btc(target)
    selected: list[UTXO] = []
    total = Decimal(0)
    for utxo in utxos:
        if utxo.spent:
            continue
        if owner_address is not None and utxo.owner_address != owner_address:
            continue
        selected.append(utxo)
        total += utxo.amount
        if total >= target:
            return InputSelection(selected=selected, total=total)
    raise InsufficientFunds(required=target, available=total)


def build_transaction(
    selection: InputSelection,
    sender: KeyMaterial,
    recipient: KeyMaterial,
    amount: Decimal,
    fee: Decimal,
    timestamp: int | None = None,
) -> Transaction:
    """Pay `amount` to the recipient, return any change to the sender."""
    amount = to_btc(amount)
    fee = to_btc(fee)
    if amount <= 0:
        msg = "Amount must be positive"
        raise ValueError(msg)
    if fee < 0:
        msg = "Fee cannot be negative"
        raise ValueError(msg)
    try:
        validate_p2pkh_address(recipient.address)
    except ValueError as exc:
        raise InvalidAddress(recipient.address, str(exc)) from None
    if selection.total < amount + fee:
        raise InsufficientFunds(required=amount + fee, available=selection.total)
    for utxo in selection.selected:
        if utxo.spent:
            raise UTXOAlreadySpent(utxo.id)

    change = selection.total - amount - fee
    outputs = [
        TxOutput(
            address=recipient.address,
            amount=amount,
            locking_script=p2pkh_locking_script(recipient.pub_key_hash),
        )
    ]
    if change > 0:
        outputs.append(
            TxOutput(
                address=sender.address,
                amount=change,
                locking_script=p2pkh_locking_script(sender.pub_key_hash),
            )
        )

    tx = Transaction(
        inputs=[
            TxInput(previous_utxo_id=u.id, amount=u.amount, locking_script=u.locking_script)
            for u in selection.selected
        ],
        outputs=outputs,
        fee=fee,
        timestamp=timestamp if timestamp is not None else int(time.time() * 1000),
    )
    tx = tx.model_copy(update={"id": tx.compute_id()})
    logger.debug("Built transaction %s: %d inputs, change %s", tx.id[:12], len(tx.inputs), change)
    return tx


def sign_transaction(tx: Transaction, key: KeyMaterial) -> TransactionSignature:
    """Sign the transaction digest and build the P2PKH scripts for the first input."""
    signature = sign_digest(key, tx.signing_hash())
    locking = tx.inputs[0].locking_script if tx.inputs else p2pkh_locking_script(key.pub_key_hash)
    return TransactionSignature(
        transaction_id=tx.id,
        signature=signature,
        public_key=key.public_key,
        unlocking_script=p2pkh_unlocking_script(signature, key.public_key),
        locking_script=locking,
    )


def verify_signature(tx: Transaction, public_key: str, signature: str) -> bool:
    return verify_digest(public_key, tx.signing_hash(), signature)


def apply_transaction(
    utxos: list[UTXO],
    tx: Transaction,
) -> list[UTXO]:
    """Spend the transaction's inputs and append its outputs to the ledger.

    Each new UTXO carries the pub-key-hash decoded from its output address.
    UTXOs are never removed.
    """
    by_id = {u.id: u for u in utxos}
    spending = {i.previous_utxo_id for i in tx.inputs}
    for utxo_id in spending:
        utxo = by_id.get(utxo_id)
        if utxo is None:
            msg = f"Unknown UTXO {utxo_id}"
            raise ValueError(msg)
        if utxo.spent:
            raise UTXOAlreadySpent(utxo_id)

    ledger = [u.model_copy(update={"spent": True}) if u.id in spending else u for u in utxos]
    for index, output in enumerate(tx.outputs):
        ledger.append(
            UTXO(
                id=f"{tx.id}:{index}",
                owner_address=output.address,
                amount=output.amount,
                locking_script=output.locking_script,
                pub_key_hash=pub_key_hash_from_address(output.address),
            )
        )
    return ledger


def random_transaction(
    rng: random.Random,
    randbytes: RandBytes,
    max_amount: Decimal = Decimal("5"),
    bits: int = 256,
) -> Transaction:
    """A funded, well-formed transaction between two throwaway identities."""
    sender = generate_key_material(randbytes, bits)
    recipient = generate_key_material(randbytes, bits)
    amount = to_btc(Decimal(rng.randint(1, int(max_amount * 100))) / 100)
    fee = to_btc(Decimal(rng.randint(10, 59)) / Decimal(100_000))
    surplus = to_btc(Decimal(rng.randint(0, 100)) / 100)
    funding = make_utxo(sender, amount + fee + surplus, random_hex_id(randbytes))
    selection = select_inputs([funding], amount + fee)
    return build_transaction(selection, sender, recipient, amount, fee)


def merkle_root(transaction_ids: Iterable[str]) -> str:
    """Pairwise double-SHA-256 over transaction ids; an odd level repeats its last hash."""
    level = [bytes.fromhex(txid) for txid in transaction_ids]
    if not level:
        return "0" * 64
    while len(level) > 1:
        if len(level) % 2:
            level.append(level[-1])
        level = [sha256d(level[i] + level[i + 1]) for i in range(0, len(level), 2)]
    return level[0].hex()
