"""Stack-machine interpreter for P2PKH-style scripts.

The unlocking script runs first and may only push data. The locking script
then runs operator by operator against the same stack. A run is valid iff it
did not fail and the top of the stack is the TRUE sentinel.

Script problems never raise: every outcome is an ExecutionResult so a failed
run can be shown next to a successful one.
"""

from __future__ import annotations

from collections.abc import Callable

from btcsim.keys.encoding import hash160_hex
from btcsim.script.schemas import (
    FALSE,
    TRUE,
    ExecutionResult,
    Opcode,
    OpToken,
    PushToken,
    Script,
    ScriptMachine,
    TraceEntry,
    short,
)

SignatureChecker = Callable[[str, str], bool]


def accept_any_signature(signature: str, public_key: str) -> bool:
    """Default OP_CHECKSIG check: any non-empty signature with a key is accepted."""
    return bool(signature) and bool(public_key)


class ScriptInterpreter:
    """Executes unlocking + locking scripts, whole or one token at a time."""

    def __init__(self, signature_checker: SignatureChecker = accept_any_signature) -> None:
        self.signature_checker = signature_checker

    def execute(self, unlocking: Script, locking: Script) -> ExecutionResult:
        machine = self.start(unlocking, locking)
        while not machine.done:
            machine = self.step(machine)
        return self.finish(machine)

    def start(self, unlocking: Script, locking: Script) -> ScriptMachine:
        if not unlocking.is_push_only:
            return ScriptMachine(
                failed=True,
                halted=True,
                failure="Unlocking script may only push data",
            )
        return ScriptMachine(
            tokens=[*unlocking.tokens, *locking.tokens],
            unlocking_length=len(unlocking.tokens),
        )

    def step(self, machine: ScriptMachine) -> ScriptMachine:
        """Execute the token under the cursor and return the next machine state."""
        if machine.done:
            return machine

        token = machine.tokens[machine.cursor]
        position = machine.cursor + 1
        if position <= machine.unlocking_length:
            label = f"scriptSig {position}"
        else:
            label = f"scriptPubKey {position - machine.unlocking_length}"

        stack = list(machine.stack)
        failed = machine.failed
        halted = False
        failure = machine.failure

        if isinstance(token, PushToken):
            stack.append(token.data)
            description = f"Push {token.render()} onto the stack"
        else:
            description, ok, halt = self._apply(token, stack)
            if not ok:
                failed = True
                failure = failure or description
            halted = halt

        entry = TraceEntry(step=label, operation=token.render(), description=description, stack=stack)
        return machine.model_copy(
            update={
                "cursor": machine.cursor + 1,
                "stack": stack,
                "trace": [*machine.trace, entry],
                "failed": failed,
                "halted": halted,
                "failure": failure,
            }
        )

    def finish(self, machine: ScriptMachine) -> ExecutionResult:
        valid = not machine.failed and bool(machine.stack) and machine.stack[-1] == TRUE
        if valid:
            message = "Script execution successful! UTXO can be spent."
        else:
            message = "Script execution failed! UTXO cannot be spent."
        return ExecutionResult(
            valid=valid,
            message=message,
            stack=machine.stack,
            trace=machine.trace,
            failure=None if valid else (machine.failure or "Top of stack is not TRUE"),
        )

    def _apply(self, token: OpToken, stack: list[str]) -> tuple[str, bool, bool]:
        """Run one opcode in place. Returns (description, ok, halt)."""
        op = token.opcode

        if op is Opcode.OP_DUP:
            if not stack:
                return "OP_DUP needs one item; stack is empty", False, False
            stack.append(stack[-1])
            return "Duplicate the top item on the stack", True, False

        if op is Opcode.OP_HASH160:
            if not stack:
                return "OP_HASH160 needs one item; stack is empty", False, False
            item = stack.pop()
            stack.append(hash160_hex(item))
            return f"Hash {short(item)} and push the result", True, False

        if op is Opcode.OP_EQUALVERIFY:
            if len(stack) < 2:
                return "OP_EQUALVERIFY needs two items", False, False
            first = stack.pop()
            second = stack.pop()
            if first != second:
                return "Hashes not equal - script fails", False, True
            return "Verify hashes are equal - continue execution", True, False

        if op is Opcode.OP_CHECKSIG:
            if len(stack) < 2:
                return "OP_CHECKSIG needs two items", False, False
            public_key = stack.pop()
            signature = stack.pop()
            if self.signature_checker(signature, public_key):
                stack.append(TRUE)
                return "Verify signature with public key - push TRUE", True, False
            stack.append(FALSE)
            return "Signature does not match public key - push FALSE", True, False

        return f"Unsupported opcode {op}", False, True


def p2pkh_locking_script(pub_key_hash: str) -> Script:
    """OP_DUP OP_HASH160 <pub_key_hash> OP_EQUALVERIFY OP_CHECKSIG"""
    return Script(
        tokens=[
            OpToken(opcode=Opcode.OP_DUP),
            OpToken(opcode=Opcode.OP_HASH160),
            PushToken(data=pub_key_hash, label="pub_key_hash"),
            OpToken(opcode=Opcode.OP_EQUALVERIFY),
            OpToken(opcode=Opcode.OP_CHECKSIG),
        ]
    )


def p2pkh_unlocking_script(signature: str, public_key: str) -> Script:
    """<signature> <public_key>"""
    return Script(
        tokens=[
            PushToken(data=signature, label="signature"),
            PushToken(data=public_key, label="public_key"),
        ]
    )
