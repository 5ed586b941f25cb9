"""Node challenge: join the library network and watch consensus at work.

Steps:
  1 setup_node              -> 2
  2 sync_node               -> 3
  3 broadcast_transaction   -> 4
  4 propose_block           -> 5
  5 create_fork             -> 6
  6 resolve_fork            -> 7, challenge complete

disconnect_peer is available from step 3 until the fork is created.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from btcsim.network.consensus import (
    USER_PEER_ID,
    build_network,
    find_peer,
    mark_inactive,
    mine_block,
    probabilistic_policy,
    propagate_transaction,
    propose_block as vote_on_block,
    replace_peer,
    sync_node as download_blocks,
    tip_height,
)
from btcsim.network.forks import create_fork as split_network
from btcsim.network.forks import resolve_fork as race_branches
from btcsim.network.scheduler import EventScheduler
from btcsim.network.schemas import (
    ForkScenario,
    PeerKind,
    ProposalOutcome,
    SimulatedPeer,
    SyncProgress,
)
from btcsim.session.controller import (
    Action,
    SimulationContext,
    StepSimulator,
    action_table,
    advance,
    complete,
)
from btcsim.session.schemas import SimulationState
from btcsim.transactions.builder import random_transaction
from btcsim.transactions.schemas import Block, Transaction

FINAL_STEP = 7

# Filler transactions mined next to the user's broadcast.
EXTRA_BLOCK_TRANSACTIONS = 2


class NodeChallengeState(SimulationState):
    user_kind: PeerKind = PeerKind.FULL
    peers: list[SimulatedPeer] = []
    clock_ms: int = 0
    sync_history: list[SyncProgress] = []
    transaction: Transaction | None = None
    transaction_outcome: ProposalOutcome | None = None
    block: Block | None = None
    block_outcome: ProposalOutcome | None = None
    fork: ForkScenario | None = None

    @property
    def user_node(self) -> SimulatedPeer | None:
        return next((p for p in self.peers if p.is_user), None)


class SetupNodeParams(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: PeerKind = PeerKind.FULL


class PeerParams(BaseModel):
    model_config = ConfigDict(extra="forbid")

    peer_id: str


def _policy(ctx: SimulationContext):
    return ctx.validation_policy or probabilistic_policy(ctx.rng, ctx.settings)


def setup_node(
    state: NodeChallengeState,
    ctx: SimulationContext,
    kind: PeerKind = PeerKind.FULL,
) -> NodeChallengeState:
    peers = build_network(ctx.settings, ctx.rng, kind)
    return state.model_copy(update={"user_kind": kind, "peers": peers, "session": advance(state.session, 2)})


def sync_node(state: NodeChallengeState, ctx: SimulationContext) -> NodeChallengeState:
    scheduler = EventScheduler(state.clock_ms)
    network = [p for p in state.peers if not p.is_user]
    user, history = download_blocks(
        find_peer(state.peers, USER_PEER_ID),
        tip_height(network),
        scheduler,
        ctx.settings.sync_step_percent,
        interval_ms=ctx.settings.sync_interval_ms,
    )
    return state.model_copy(
        update={
            "peers": replace_peer(state.peers, user),
            "sync_history": history,
            "clock_ms": scheduler.now_ms,
            "session": advance(state.session, 3),
        }
    )


def broadcast_transaction(state: NodeChallengeState, ctx: SimulationContext) -> NodeChallengeState:
    """Relay a fresh transaction; a rejected broadcast can simply be retried."""
    scheduler = EventScheduler(state.clock_ms)
    tx = random_transaction(ctx.rng, ctx.randbytes, bits=ctx.settings.key_entropy_bits)
    outcome = propagate_transaction(state.peers, tx, _policy(ctx), scheduler, ctx.settings)
    return state.model_copy(
        update={
            "peers": outcome.peers,
            "transaction": tx,
            "transaction_outcome": outcome,
            "clock_ms": scheduler.now_ms,
            "session": advance(state.session, 4),
        }
    )


def propose_block(state: NodeChallengeState, ctx: SimulationContext) -> NodeChallengeState:
    scheduler = EventScheduler(state.clock_ms)
    bits = ctx.settings.key_entropy_bits
    transactions = [state.transaction] + [
        random_transaction(ctx.rng, ctx.randbytes, bits=bits) for _ in range(EXTRA_BLOCK_TRANSACTIONS)
    ]
    block = mine_block(state.peers, transactions, ctx.rng, ctx.randbytes)
    outcome = vote_on_block(state.peers, block, _policy(ctx), scheduler, ctx.settings)
    return state.model_copy(
        update={
            "peers": outcome.peers,
            "block": block,
            "block_outcome": outcome,
            "clock_ms": scheduler.now_ms,
            "session": advance(state.session, 5),
        }
    )


def create_fork(state: NodeChallengeState, ctx: SimulationContext) -> NodeChallengeState:
    fork, peers = split_network(state.peers, ctx.rng)
    return state.model_copy(update={"fork": fork, "peers": peers, "session": advance(state.session, 6)})


def resolve_fork(state: NodeChallengeState, ctx: SimulationContext) -> NodeChallengeState:
    scheduler = EventScheduler(state.clock_ms)
    fork, peers = race_branches(
        state.peers, state.fork, scheduler, ctx.settings, ctx.rng, ctx.race_policy
    )
    session = complete(
        state.session,
        FINAL_STEP,
        "Congratulations! You've witnessed how Bitcoin nodes maintain consensus "
        "and resolve conflicts through the longest valid chain rule!",
    )
    return state.model_copy(
        update={"fork": fork, "peers": peers, "clock_ms": scheduler.now_ms, "session": session}
    )


def disconnect_peer(state: NodeChallengeState, ctx: SimulationContext, peer_id: str) -> NodeChallengeState:
    return state.model_copy(update={"peers": mark_inactive(state.peers, peer_id)})


class NodeChallenge(StepSimulator[NodeChallengeState]):
    kind = "node"
    final_step = FINAL_STEP
    state_model = NodeChallengeState
    actions = action_table(
        Action("setup_node", setup_node, step=1, params=SetupNodeParams,
               description="Choose a node type and join the network"),
        Action("sync_node", sync_node, step=2, description="Download the blocks you are missing"),
        Action("broadcast_transaction", broadcast_transaction, step=3,
               description="Relay a transaction to every peer"),
        Action("disconnect_peer", disconnect_peer, step=3, until_step=5, params=PeerParams,
               description="Take a peer offline"),
        Action("propose_block", propose_block, step=4, description="Mine a block and put it to the vote"),
        Action("create_fork", create_fork, step=5, description="Two miners find a block at once"),
        Action("resolve_fork", resolve_fork, step=6, description="Race the branches until one is longer"),
    )
