"""Script challenge: unlock a treasure chest with Bitcoin Script.

Steps:
  1 show_analogy            -> 2
  2 create_scripts          -> 3
  3 execute_step / run_to_end; a valid run completes the challenge (4)
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict

from btcsim.keys.generator import generate_key_material
from btcsim.keys.schemas import KeyMaterial
from btcsim.keys.signing import message_digest, sign_digest, verify_digest
from btcsim.script.interpreter import ScriptInterpreter, p2pkh_locking_script, p2pkh_unlocking_script
from btcsim.script.schemas import ExecutionResult, Script, ScriptMachine
from btcsim.session.controller import (
    Action,
    SimulationContext,
    StepSimulator,
    action_table,
    advance,
    complete,
)
from btcsim.session.schemas import SimulationState

CHALLENGE_MESSAGE = "Unlock the treasure chest"
FINAL_STEP = 4


class TreasureChest(BaseModel):
    model_config = ConfigDict(frozen=True)

    locked: bool = True
    puzzle: str = ""
    solution: str = ""


class ScriptChallengeState(SimulationState):
    chest: TreasureChest = TreasureChest()
    owner: KeyMaterial | None = None
    signature: str = ""
    locking_script: Script | None = None
    unlocking_script: Script | None = None
    machine: ScriptMachine | None = None
    result: ExecutionResult | None = None


class CreateScriptsParams(BaseModel):
    model_config = ConfigDict(extra="forbid")

    tamper: Literal["swap_order", "wrong_public_key"] | None = None


def _interpreter() -> ScriptInterpreter:
    digest = message_digest(CHALLENGE_MESSAGE)
    return ScriptInterpreter(lambda sig, pub: verify_digest(pub, digest, sig))


def show_analogy(state: ScriptChallengeState, ctx: SimulationContext) -> ScriptChallengeState:
    chest = TreasureChest(
        locked=True,
        puzzle="Provide the key that matches this lock pattern",
        solution="The correct key with matching teeth",
    )
    return state.model_copy(update={"chest": chest, "session": advance(state.session, 2)})


def create_scripts(
    state: ScriptChallengeState,
    ctx: SimulationContext,
    tamper: str | None = None,
) -> ScriptChallengeState:
    bits = ctx.settings.key_entropy_bits
    owner = generate_key_material(ctx.randbytes, bits)
    digest = message_digest(CHALLENGE_MESSAGE)
    signature = sign_digest(owner, digest)

    locking = p2pkh_locking_script(owner.pub_key_hash)
    if tamper == "swap_order":
        unlocking = Script(tokens=list(reversed(p2pkh_unlocking_script(signature, owner.public_key).tokens)))
    elif tamper == "wrong_public_key":
        impostor = generate_key_material(ctx.randbytes, bits)
        unlocking = p2pkh_unlocking_script(sign_digest(impostor, digest), impostor.public_key)
    else:
        unlocking = p2pkh_unlocking_script(signature, owner.public_key)

    chest = TreasureChest(
        locked=False,
        puzzle="Mathematical proof of ownership required",
        solution="Signature + Public Key that matches the puzzle",
    )
    return state.model_copy(
        update={
            "chest": chest,
            "owner": owner,
            "signature": signature,
            "locking_script": locking,
            "unlocking_script": unlocking,
            "session": advance(state.session, 3),
        }
    )


def _conclude(state: ScriptChallengeState, machine: ScriptMachine) -> ScriptChallengeState:
    result = _interpreter().finish(machine)
    update: dict = {"machine": machine, "result": result}
    if result.valid:
        update["chest"] = state.chest.model_copy(update={"locked": False})
        update["session"] = complete(
            state.session,
            FINAL_STEP,
            "Congratulations! You've mastered Bitcoin Script operations and unlocked the treasure!",
        )
    return state.model_copy(update=update)


def execute_step(state: ScriptChallengeState, ctx: SimulationContext) -> ScriptChallengeState:
    """Execute one token; the call after the last token evaluates the result."""
    if state.result is not None:
        return state
    interpreter = _interpreter()
    machine = state.machine
    if machine is None:
        machine = interpreter.start(state.unlocking_script or Script(), state.locking_script or Script())
    elif machine.done:
        return _conclude(state, machine)
    if not machine.done:
        machine = interpreter.step(machine)
    return state.model_copy(update={"machine": machine})


def run_to_end(state: ScriptChallengeState, ctx: SimulationContext) -> ScriptChallengeState:
    if state.result is not None:
        return state
    interpreter = _interpreter()
    machine = state.machine or interpreter.start(
        state.unlocking_script or Script(), state.locking_script or Script()
    )
    while not machine.done:
        machine = interpreter.step(machine)
    return _conclude(state, machine)


class ScriptChallenge(StepSimulator[ScriptChallengeState]):
    kind = "script"
    final_step = FINAL_STEP
    state_model = ScriptChallengeState
    actions = action_table(
        Action("show_analogy", show_analogy, step=1, description="Compare a script to a locked chest"),
        Action("create_scripts", create_scripts, step=2, params=CreateScriptsParams,
               description="Build the locking and unlocking scripts"),
        Action("execute_step", execute_step, step=3, description="Execute the next script operation"),
        Action("run_to_end", run_to_end, step=3, description="Execute all remaining operations"),
    )
