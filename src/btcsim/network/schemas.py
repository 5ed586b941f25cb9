"""Pydantic models for simulated peers, votes and forks."""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict

from btcsim.transactions.schemas import Transaction

USER_PEER_ID = "user"


class PeerKind(str, Enum):
    FULL = "full"
    LIGHT = "light"
    MINING = "mining"


class SimulatedPeer(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    kind: PeerKind
    name: str
    block_height: int
    mempool: list[Transaction] = []
    validating: bool = False
    status: str = "synced"
    active: bool = True
    tip_branch: str | None = None

    @property
    def is_user(self) -> bool:
        return self.id == USER_PEER_ID


class ConsensusVote(BaseModel):
    model_config = ConfigDict(frozen=True)

    peer_id: str
    peer_name: str
    decision: Literal["accept", "reject"]
    reason: str


class ConsensusDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    accepted: bool
    accepts: int
    rejects: int
    total: int


class ProposalOutcome(BaseModel):
    """Votes for one proposal plus the peers as they stand afterwards."""

    model_config = ConfigDict(frozen=True)

    votes: list[ConsensusVote]
    decision: ConsensusDecision
    peers: list[SimulatedPeer]
    elapsed_ms: int


class SyncProgress(BaseModel):
    model_config = ConfigDict(frozen=True)

    percent: int
    block_height: int
    target_height: int
    synced: bool


class ForkBranch(BaseModel):
    model_config = ConfigDict(frozen=True)

    chain_tag: str
    number: int
    mined_by: str
    transaction_count: int
    supporters: list[str]


class ForkScenario(BaseModel):
    model_config = ConfigDict(frozen=True)

    branches: list[ForkBranch]
    winner: str | None = None
    rounds: int = 0
    resolved_at_ms: int | None = None
