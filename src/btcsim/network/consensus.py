"""Peer network, proposal propagation and majority voting.

Peers receive a proposal one after another on the scheduler's virtual clock.
Light peers only check headers and always accept; full and mining peers ask
the validation policy. A proposal passes when strictly more than half of the
votes accept, and the tally is only taken once every expected vote is in.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable, Iterable, Sequence
from typing import Any, Literal

from btcsim.config import Settings
from btcsim.errors import ConsensusRejected, NoActivePeers
from btcsim.keys.generator import RandBytes, random_hex_id
from btcsim.network.scheduler import EventScheduler
from btcsim.network.schemas import (
    USER_PEER_ID,
    ConsensusDecision,
    ConsensusVote,
    PeerKind,
    ProposalOutcome,
    SimulatedPeer,
    SyncProgress,
)
from btcsim.transactions.builder import merkle_root
from btcsim.transactions.schemas import Block, Transaction

logger = logging.getLogger(__name__)

Subject = Literal["block", "transaction"]
ValidationPolicy = Callable[[SimulatedPeer, Subject, Any], bool]


# (kind, name, height offset from the base height)
ROSTER: tuple[tuple[PeerKind, str, int], ...] = (
    (PeerKind.FULL, "University Library", 0),
    (PeerKind.FULL, "City Central Library", 0),
    (PeerKind.FULL, "Community Library", -1),
    (PeerKind.LIGHT, "Mobile Reader", 0),
    (PeerKind.LIGHT, "Tablet User", 0),
    (PeerKind.MINING, "Publishing House Alpha", 0),
    (PeerKind.MINING, "Publishing House Beta", 0),
)

USER_NODE_NAMES = {
    PeerKind.FULL: "Your Full Node",
    PeerKind.LIGHT: "Your Light Node",
    PeerKind.MINING: "Your Mining Node",
}

REASONS = {
    ("block", True): "All transactions valid",
    ("block", False): "Invalid transaction detected",
    ("transaction", True): "Valid signature and unspent inputs",
    ("transaction", False): "Invalid signature or spent inputs",
}
LIGHT_REASONS = {
    "block": "Valid block header and PoW",
    "transaction": "Relayed without full validation",
}


def build_network(settings: Settings, rng: random.Random, user_kind: PeerKind) -> list[SimulatedPeer]:
    """The fixed peer roster plus the user's own node, a couple of blocks behind."""
    base = settings.base_block_height
    peers = [
        SimulatedPeer(
            id=f"node_{index + 1}",
            kind=kind,
            name=name,
            block_height=base + offset + rng.randint(0, 1),
        )
        for index, (kind, name, offset) in enumerate(ROSTER)
    ]
    user = SimulatedPeer(
        id=USER_PEER_ID,
        kind=user_kind,
        name=USER_NODE_NAMES[user_kind],
        block_height=base - 2,
        status="syncing",
    )
    return [*peers, user]


def tip_height(peers: Iterable[SimulatedPeer]) -> int:
    """Best height among active peers."""
    heights = [p.block_height for p in peers if p.active]
    if not heights:
        raise NoActivePeers()
    return max(heights)


def find_peer(peers: Sequence[SimulatedPeer], peer_id: str) -> SimulatedPeer:
    for peer in peers:
        if peer.id == peer_id:
            return peer
    raise KeyError(peer_id)


def replace_peer(peers: Sequence[SimulatedPeer], peer: SimulatedPeer) -> list[SimulatedPeer]:
    return [peer if p.id == peer.id else p for p in peers]


def mark_inactive(peers: Sequence[SimulatedPeer], peer_id: str) -> list[SimulatedPeer]:
    """Take a peer offline. Inactive peers neither receive nor vote."""
    peer = find_peer(peers, peer_id)
    return replace_peer(peers, peer.model_copy(update={"active": False, "status": "offline"}))


def probabilistic_policy(rng: random.Random, settings: Settings) -> ValidationPolicy:
    """Default validation: each check passes with a configured probability."""

    def policy(peer: SimulatedPeer, subject: Subject, proposal: Any) -> bool:
        if subject == "block":
            return rng.random() < settings.block_validation_probability
        return rng.random() < settings.tx_validity_probability

    return policy


def cast_vote(
    peer: SimulatedPeer,
    subject: Subject,
    proposal: Any,
    policy: ValidationPolicy,
) -> ConsensusVote:
    if peer.kind is PeerKind.LIGHT:
        return ConsensusVote(
            peer_id=peer.id, peer_name=peer.name, decision="accept", reason=LIGHT_REASONS[subject]
        )
    # the peer is busy validating while the policy inspects it
    valid = policy(peer.model_copy(update={"validating": True}), subject, proposal)
    return ConsensusVote(
        peer_id=peer.id,
        peer_name=peer.name,
        decision="accept" if valid else "reject",
        reason=REASONS[(subject, valid)],
    )


def is_majority(accepts: int, total: int) -> bool:
    """Strictly more than half; a tie rejects."""
    return accepts * 2 > total


def tally(votes: Sequence[ConsensusVote], expected: int) -> ConsensusDecision:
    if len(votes) < expected:
        msg = f"Only {len(votes)} of {expected} votes received"
        raise ValueError(msg)
    accepts = sum(1 for v in votes if v.decision == "accept")
    total = len(votes)
    return ConsensusDecision(
        accepted=is_majority(accepts, total),
        accepts=accepts,
        rejects=total - accepts,
        total=total,
    )


def run_vote_round(
    peers: Sequence[SimulatedPeer],
    subject: Subject,
    proposal: Any,
    policy: ValidationPolicy,
    scheduler: EventScheduler,
    stagger_ms: int,
) -> tuple[list[ConsensusVote], ConsensusDecision]:
    """Deliver the proposal to each active peer in order and collect votes."""
    voters = [p for p in peers if p.active]
    votes: list[ConsensusVote] = []

    for index, peer in enumerate(voters):

        def deliver(peer: SimulatedPeer = peer) -> None:
            votes.append(cast_vote(peer, subject, proposal, policy))

        scheduler.schedule(index * stagger_ms, f"{subject}:{peer.id}", deliver)

    scheduler.run()
    decision = tally(votes, len(voters))
    logger.debug("%s vote: %d/%d accepted", subject, decision.accepts, decision.total)
    return votes, decision


def commit_block(peers: Sequence[SimulatedPeer], block: Block) -> list[SimulatedPeer]:
    """Every peer moves up to the block and drops its transactions from the mempool."""
    confirmed = block.transaction_ids
    return [
        p.model_copy(
            update={
                "block_height": max(p.block_height, block.number),
                "mempool": [tx for tx in p.mempool if tx.id not in confirmed],
            }
        )
        for p in peers
    ]


def admit_transaction(
    peers: Sequence[SimulatedPeer],
    tx: Transaction,
    votes: Sequence[ConsensusVote],
) -> list[SimulatedPeer]:
    """Add the transaction to the mempool of each peer that accepted it."""
    accepted_by = {v.peer_id for v in votes if v.decision == "accept"}
    updated = []
    for peer in peers:
        if peer.id in accepted_by and all(t.id != tx.id for t in peer.mempool):
            peer = peer.model_copy(update={"mempool": [*peer.mempool, tx]})
        updated.append(peer)
    return updated


def propagate_transaction(
    peers: Sequence[SimulatedPeer],
    tx: Transaction,
    policy: ValidationPolicy,
    scheduler: EventScheduler,
    settings: Settings,
) -> ProposalOutcome:
    """Broadcast a transaction. Raises ConsensusRejected without touching any peer."""
    start = scheduler.now_ms
    votes, decision = run_vote_round(
        peers, "transaction", tx, policy, scheduler, settings.propagation_stagger_ms
    )
    if not decision.accepted:
        raise ConsensusRejected(votes, decision.accepts, decision.total)
    return ProposalOutcome(
        votes=votes,
        decision=decision,
        peers=admit_transaction(peers, tx, votes),
        elapsed_ms=scheduler.now_ms - start,
    )


def propose_block(
    peers: Sequence[SimulatedPeer],
    block: Block,
    policy: ValidationPolicy,
    scheduler: EventScheduler,
    settings: Settings,
) -> ProposalOutcome:
    """Put a block to the vote. Raises ConsensusRejected without touching any peer."""
    start = scheduler.now_ms
    votes, decision = run_vote_round(peers, "block", block, policy, scheduler, settings.vote_stagger_ms)
    if not decision.accepted:
        raise ConsensusRejected(votes, decision.accepts, decision.total)
    return ProposalOutcome(
        votes=votes,
        decision=decision,
        peers=commit_block(peers, block),
        elapsed_ms=scheduler.now_ms - start,
    )


def mine_block(
    peers: Sequence[SimulatedPeer],
    transactions: Sequence[Transaction],
    rng: random.Random,
    randbytes: RandBytes,
    timestamp: int | None = None,
) -> Block:
    """A candidate block on top of the best active tip, mined by the first active miner."""
    miner = next(
        (p.name for p in peers if p.active and p.kind is PeerKind.MINING and not p.is_user),
        "Mining Node",
    )
    return Block(
        number=tip_height(peers) + 1,
        previous_hash=random_hex_id(randbytes),
        merkle_root=merkle_root(tx.id for tx in transactions),
        transactions=list(transactions),
        mined_by=miner,
        nonce=rng.randint(0, 999_999),
        timestamp=timestamp if timestamp is not None else int(time.time() * 1000),
    )


def sync_progress(start_height: int, target_height: int, step_percent: int) -> list[SyncProgress]:
    """Download progress in fixed increments, ending exactly at the target height."""
    if not 0 < step_percent <= 100:
        msg = "Sync step must be between 1 and 100 percent"
        raise ValueError(msg)
    gap = max(target_height - start_height, 0)
    steps = []
    percent = 0
    while percent < 100:
        percent = min(percent + step_percent, 100)
        height = start_height + gap * percent // 100
        steps.append(
            SyncProgress(percent=percent, block_height=height, target_height=target_height, synced=percent == 100)
        )
    return steps


def sync_node(
    peer: SimulatedPeer,
    target_height: int,
    scheduler: EventScheduler,
    step_percent: int,
    interval_ms: int = 500,
) -> tuple[SimulatedPeer, list[SyncProgress]]:
    """Bring a peer up to the target height, one scheduled increment at a time."""
    progress: list[SyncProgress] = []
    current = {"peer": peer}

    for index, step in enumerate(sync_progress(peer.block_height, target_height, step_percent)):

        def apply(step: SyncProgress = step) -> None:
            current["peer"] = current["peer"].model_copy(
                update={
                    "block_height": max(current["peer"].block_height, step.block_height),
                    "status": "synced" if step.synced else "syncing",
                }
            )
            progress.append(step)

        scheduler.schedule((index + 1) * interval_ms, f"sync:{step.percent}", apply)

    scheduler.run()
    return current["peer"], progress
