"""Pydantic models for scripts and their execution."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

TRUE = "True"
FALSE = "False"


class Opcode(str, Enum):
    OP_DUP = "OP_DUP"
    OP_HASH160 = "OP_HASH160"
    OP_EQUALVERIFY = "OP_EQUALVERIFY"
    OP_CHECKSIG = "OP_CHECKSIG"


class OpToken(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["op"] = "op"
    opcode: Opcode

    def render(self) -> str:
        return self.opcode.value


class PushToken(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["push"] = "push"
    data: str
    label: Literal["signature", "public_key", "pub_key_hash", "literal"] = "literal"

    def render(self) -> str:
        return f"<{short(self.data)}>"


ScriptToken = Annotated[Union[OpToken, PushToken], Field(discriminator="kind")]


class Script(BaseModel):
    model_config = ConfigDict(frozen=True)

    tokens: list[ScriptToken] = []

    @property
    def is_push_only(self) -> bool:
        return all(isinstance(token, PushToken) for token in self.tokens)

    def render(self) -> str:
        return " ".join(token.render() for token in self.tokens)


class TraceEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    step: str  # "scriptSig 1", "scriptPubKey 3"
    operation: str
    description: str
    stack: list[str]

    def render(self) -> str:
        return f"{self.step}: {self.description} | stack: [{', '.join(short(i) for i in self.stack)}]"


class ScriptMachine(BaseModel):
    """Interpreter state between single steps."""

    model_config = ConfigDict(frozen=True)

    tokens: list[ScriptToken] = []
    unlocking_length: int = 0
    cursor: int = 0
    stack: list[str] = []
    trace: list[TraceEntry] = []
    failed: bool = False
    halted: bool = False
    failure: str | None = None

    @property
    def done(self) -> bool:
        return self.halted or self.cursor >= len(self.tokens)


class ExecutionResult(BaseModel):
    """Outcome of a full run. `valid` is False for a failed script; nothing is raised."""

    model_config = ConfigDict(frozen=True)

    valid: bool
    message: str
    stack: list[str]
    trace: list[TraceEntry]
    failure: str | None = None

    def log_lines(self) -> list[str]:
        return [entry.render() for entry in self.trace] + [self.message]


def short(item: str, length: int = 8) -> str:
    """Abbreviate long hex items for display."""
    if len(item) <= length + 3 or item in (TRUE, FALSE):
        return item
    return f"{item[:length]}..."
