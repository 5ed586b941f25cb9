"""Transaction challenge: follow one payment from keys to a mined block.

Steps:
  1 generate_keys       -> 2
  2 create_transaction  -> 3
  3 sign_transaction    -> 4
  4 validate_script     -> 5 (only when the script run is valid)
  5 broadcast           -> 6
  6 mine_block          -> 7, challenge complete
"""

from __future__ import annotations

import time
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from btcsim.keys.generator import generate_key_material, random_hex_id
from btcsim.keys.schemas import KeyMaterial
from btcsim.keys.signing import verify_digest
from btcsim.script.interpreter import ScriptInterpreter
from btcsim.script.schemas import ExecutionResult
from btcsim.session.controller import (
    Action,
    SimulationContext,
    StepSimulator,
    action_table,
    advance,
    complete,
)
from btcsim.session.schemas import SimulationState
from btcsim.transactions.builder import (
    apply_transaction,
    build_transaction,
    make_utxo,
    merkle_root,
    select_inputs,
    sign_transaction as sign,
)
from btcsim.transactions.schemas import (
    UTXO,
    Block,
    InputSelection,
    MempoolEntry,
    Transaction,
    TransactionSignature,
)

FINAL_STEP = 7


class TransactionChallengeState(SimulationState):
    sender: KeyMaterial | None = None
    recipient: KeyMaterial | None = None
    utxos: list[UTXO] = []
    selection: InputSelection | None = None
    transaction: Transaction | None = None
    signature: TransactionSignature | None = None
    script_result: ExecutionResult | None = None
    mempool: list[MempoolEntry] = []
    blocks: list[Block] = []


class CreateTransactionParams(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: Decimal | None = Field(default=None, gt=0)
    fee: Decimal | None = Field(default=None, ge=0)


def generate_keys(state: TransactionChallengeState, ctx: SimulationContext) -> TransactionChallengeState:
    bits = ctx.settings.key_entropy_bits
    sender = generate_key_material(ctx.randbytes, bits)
    recipient = generate_key_material(ctx.randbytes, bits)
    utxos = [
        make_utxo(sender, amount, random_hex_id(ctx.randbytes))
        for amount in ctx.settings.initial_utxo_amounts
    ]
    return state.model_copy(
        update={
            "sender": sender,
            "recipient": recipient,
            "utxos": utxos,
            "session": advance(state.session, 2),
        }
    )


def create_transaction(
    state: TransactionChallengeState,
    ctx: SimulationContext,
    amount: Decimal | None = None,
    fee: Decimal | None = None,
) -> TransactionChallengeState:
    amount = ctx.settings.default_transfer_amount if amount is None else amount
    fee = ctx.settings.default_fee if fee is None else fee
    selection = select_inputs(state.utxos, amount + fee, state.sender.address)
    tx = build_transaction(selection, state.sender, state.recipient, amount, fee)
    return state.model_copy(
        update={"selection": selection, "transaction": tx, "session": advance(state.session, 3)}
    )


def sign_transaction(state: TransactionChallengeState, ctx: SimulationContext) -> TransactionChallengeState:
    signature = sign(state.transaction, state.sender)
    return state.model_copy(update={"signature": signature, "session": advance(state.session, 4)})


def validate_script(state: TransactionChallengeState, ctx: SimulationContext) -> TransactionChallengeState:
    """Run the P2PKH scripts; a failed run stays on this step."""
    digest = state.transaction.signing_hash()
    interpreter = ScriptInterpreter(lambda sig, pub: verify_digest(pub, digest, sig))
    result = interpreter.execute(state.signature.unlocking_script, state.signature.locking_script)
    session = advance(state.session, 5) if result.valid else state.session
    return state.model_copy(update={"script_result": result, "session": session})


def broadcast(state: TransactionChallengeState, ctx: SimulationContext) -> TransactionChallengeState:
    entry = MempoolEntry(transaction=state.transaction, signature=state.signature)
    return state.model_copy(
        update={"mempool": [*state.mempool, entry], "session": advance(state.session, 6)}
    )


def mine_block(state: TransactionChallengeState, ctx: SimulationContext) -> TransactionChallengeState:
    """Confirm every mempool transaction in a new block and update the ledger."""
    utxos = state.utxos
    for entry in state.mempool:
        utxos = apply_transaction(utxos, entry.transaction)

    transactions = [entry.transaction for entry in state.mempool]
    number = ctx.settings.base_block_height + len(state.blocks) + 1
    previous_hash = state.blocks[-1].block_hash() if state.blocks else random_hex_id(ctx.randbytes)
    block = Block(
        number=number,
        previous_hash=previous_hash,
        merkle_root=merkle_root(tx.id for tx in transactions),
        transactions=transactions,
        mined_by="You",
        nonce=ctx.rng.randint(0, 2**32 - 1),
        timestamp=int(time.time() * 1000),
    )
    session = complete(
        state.session,
        FINAL_STEP,
        "Transaction confirmed! The UTXO set has been updated.",
    )
    return state.model_copy(
        update={"utxos": utxos, "mempool": [], "blocks": [*state.blocks, block], "session": session}
    )


class TransactionChallenge(StepSimulator[TransactionChallengeState]):
    kind = "transaction"
    final_step = FINAL_STEP
    state_model = TransactionChallengeState
    actions = action_table(
        Action("generate_keys", generate_keys, step=1, description="Create sender and recipient keys"),
        Action("create_transaction", create_transaction, step=2, params=CreateTransactionParams,
               description="Select UTXOs and build the payment"),
        Action("sign_transaction", sign_transaction, step=3, description="Sign with the sender's private key"),
        Action("validate_script", validate_script, step=4, description="Run the P2PKH scripts"),
        Action("broadcast", broadcast, step=5, description="Send the transaction to the mempool"),
        Action("mine_block", mine_block, step=6, description="Confirm the transaction in a block"),
    )
