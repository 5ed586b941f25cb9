"""Unit tests for the P2PKH script interpreter."""

from __future__ import annotations

import pytest

from btcsim.keys.generator import generate_key_material
from btcsim.keys.signing import message_digest, sign_digest, verify_digest
from btcsim.script.interpreter import (
    ScriptInterpreter,
    accept_any_signature,
    p2pkh_locking_script,
    p2pkh_unlocking_script,
)
from btcsim.script.schemas import FALSE, TRUE, Opcode, OpToken, PushToken, Script

MESSAGE = message_digest("spend me")


@pytest.fixture
def owner(randbytes):
    return generate_key_material(randbytes)


@pytest.fixture
def interpreter():
    return ScriptInterpreter(lambda sig, pub: verify_digest(pub, MESSAGE, sig))


class TestP2PKH:
    def test_matching_key_unlocks(self, owner, interpreter):
        signature = sign_digest(owner, MESSAGE)
        result = interpreter.execute(
            p2pkh_unlocking_script(signature, owner.public_key),
            p2pkh_locking_script(owner.pub_key_hash),
        )
        assert result.valid
        assert result.stack == [TRUE]
        assert result.failure is None
        assert result.message == "Script execution successful! UTXO can be spent."

    def test_trace_covers_every_token(self, owner, interpreter):
        signature = sign_digest(owner, MESSAGE)
        result = interpreter.execute(
            p2pkh_unlocking_script(signature, owner.public_key),
            p2pkh_locking_script(owner.pub_key_hash),
        )
        assert [entry.step for entry in result.trace] == [
            "scriptSig 1",
            "scriptSig 2",
            "scriptPubKey 1",
            "scriptPubKey 2",
            "scriptPubKey 3",
            "scriptPubKey 4",
            "scriptPubKey 5",
        ]
        # after OP_DUP: sig, pub, pub
        assert result.trace[2].stack == [signature, owner.public_key, owner.public_key]
        assert len(result.log_lines()) == len(result.trace) + 1

    def test_other_public_key_fails_at_equalverify(self, owner, interpreter, randbytes):
        impostor = generate_key_material(randbytes)
        result = interpreter.execute(
            p2pkh_unlocking_script(sign_digest(impostor, MESSAGE), impostor.public_key),
            p2pkh_locking_script(owner.pub_key_hash),
        )
        assert not result.valid
        assert result.trace[-1].operation == Opcode.OP_EQUALVERIFY.value
        assert "not equal" in result.failure
        assert result.message == "Script execution failed! UTXO cannot be spent."

    def test_tampered_embedded_hash_fails(self, owner, interpreter):
        locking = p2pkh_locking_script(owner.pub_key_hash)
        embedded = locking.tokens[2]
        assert embedded.label == "pub_key_hash"
        flipped = embedded.data[:-1] + ("0" if embedded.data[-1] != "0" else "1")
        tokens = list(locking.tokens)
        tokens[2] = embedded.model_copy(update={"data": flipped})
        result = interpreter.execute(
            p2pkh_unlocking_script(sign_digest(owner, MESSAGE), owner.public_key),
            Script(tokens=tokens),
        )
        assert not result.valid
        assert result.trace[-1].operation == Opcode.OP_EQUALVERIFY.value
        assert len(result.trace) == 6

    def test_swapped_order_fails(self, owner, interpreter):
        signature = sign_digest(owner, MESSAGE)
        swapped = Script(tokens=list(reversed(p2pkh_unlocking_script(signature, owner.public_key).tokens)))
        result = interpreter.execute(swapped, p2pkh_locking_script(owner.pub_key_hash))
        assert not result.valid

    def test_bad_signature_pushes_false(self, owner, interpreter, randbytes):
        other = generate_key_material(randbytes)
        forged = sign_digest(other, MESSAGE)
        result = interpreter.execute(
            p2pkh_unlocking_script(forged, owner.public_key),
            p2pkh_locking_script(owner.pub_key_hash),
        )
        assert not result.valid
        assert result.stack == [FALSE]


class TestEdgeCases:
    def test_default_checker_accepts_any_signature(self, owner):
        result = ScriptInterpreter().execute(
            p2pkh_unlocking_script("not-a-real-signature", owner.public_key),
            p2pkh_locking_script(owner.pub_key_hash),
        )
        assert result.valid

    def test_default_checker_rejects_empty(self):
        assert not accept_any_signature("", "02ab")

    def test_empty_unlocking_script_fails_without_raising(self, owner):
        result = ScriptInterpreter().execute(Script(), p2pkh_locking_script(owner.pub_key_hash))
        assert not result.valid
        assert "OP_DUP needs one item" in result.failure

    def test_opcode_in_unlocking_script_is_rejected(self, owner):
        unlocking = Script(tokens=[OpToken(opcode=Opcode.OP_DUP), PushToken(data=owner.public_key)])
        result = ScriptInterpreter().execute(unlocking, p2pkh_locking_script(owner.pub_key_hash))
        assert not result.valid
        assert result.trace == []
        assert result.failure == "Unlocking script may only push data"

    def test_stepping_matches_full_run(self, owner, interpreter):
        signature = sign_digest(owner, MESSAGE)
        unlocking = p2pkh_unlocking_script(signature, owner.public_key)
        locking = p2pkh_locking_script(owner.pub_key_hash)

        machine = interpreter.start(unlocking, locking)
        steps = 0
        while not machine.done:
            machine = interpreter.step(machine)
            steps += 1
        assert steps == 7
        assert interpreter.finish(machine) == interpreter.execute(unlocking, locking)

    def test_step_after_halt_is_noop(self, owner, randbytes):
        impostor = generate_key_material(randbytes)
        interpreter = ScriptInterpreter()
        machine = interpreter.start(
            p2pkh_unlocking_script("sig", impostor.public_key),
            p2pkh_locking_script(owner.pub_key_hash),
        )
        while not machine.done:
            machine = interpreter.step(machine)
        assert machine.halted
        assert interpreter.step(machine) is machine
