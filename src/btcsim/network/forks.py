"""Temporary chain splits and longest-chain resolution.

Two miners find a block at the same height and the network splits between
them. Resolution is a race: whichever branch gets the next block first
becomes the longest chain and every peer switches to it.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable, Sequence

from btcsim.config import Settings
from btcsim.errors import InconclusiveRound
from btcsim.network.consensus import tip_height
from btcsim.network.scheduler import EventScheduler
from btcsim.network.schemas import ForkBranch, ForkScenario, PeerKind, SimulatedPeer

logger = logging.getLogger(__name__)

# chain tag -> simulated ms until that branch's next block, None if it never arrives
RacePolicy = Callable[[Sequence[ForkBranch], random.Random], dict[str, int | None]]

CHAIN_TAGS = ("A", "B")


def exponential_race(mean_block_interval_ms: int) -> RacePolicy:
    """Block discovery as a Poisson process: exponential waiting time per branch."""

    def race(branches: Sequence[ForkBranch], rng: random.Random) -> dict[str, int | None]:
        return {b.chain_tag: int(rng.expovariate(1 / mean_block_interval_ms)) for b in branches}

    return race


def create_fork(
    peers: Sequence[SimulatedPeer],
    rng: random.Random,
) -> tuple[ForkScenario, list[SimulatedPeer]]:
    """Split the active peers between two competing blocks at the next height.

    Each branch is supported by its miner plus half of the remaining active
    peers, chosen at random. Supporter sets are disjoint.
    """
    number = tip_height(peers) + 1
    active = [p for p in peers if p.active]
    miners = [p for p in active if p.kind is PeerKind.MINING and not p.is_user]
    miners = miners[: len(CHAIN_TAGS)]
    miner_ids = {p.id for p in miners}
    others = [p for p in active if p.id not in miner_ids]
    rng.shuffle(others)

    supporters: dict[str, list[SimulatedPeer]] = {tag: [] for tag in CHAIN_TAGS}
    for index, tag in enumerate(CHAIN_TAGS):
        if index < len(miners):
            supporters[tag].append(miners[index])
    for index, peer in enumerate(others):
        supporters[CHAIN_TAGS[index % len(CHAIN_TAGS)]].append(peer)

    branches = [
        ForkBranch(
            chain_tag=tag,
            number=number,
            mined_by=miners[index].name if index < len(miners) else f"Miner {tag}",
            transaction_count=rng.randint(1, 4),
            supporters=[p.name for p in supporters[tag]],
        )
        for index, tag in enumerate(CHAIN_TAGS)
    ]

    branch_of = {p.id: tag for tag, group in supporters.items() for p in group}
    updated = [
        p.model_copy(update={"block_height": number, "tip_branch": branch_of[p.id]}) if p.id in branch_of else p
        for p in peers
    ]
    logger.debug("Fork at height %d: %s", number, {tag: len(group) for tag, group in supporters.items()})
    return ForkScenario(branches=branches), updated


def _pick_winner(arrivals: dict[str, int | None], timeout_ms: int) -> tuple[str, int] | None:
    in_time = {tag: at for tag, at in arrivals.items() if at is not None and at <= timeout_ms}
    if not in_time:
        return None
    first = min(in_time.values())
    leaders = [tag for tag, at in in_time.items() if at == first]
    if len(leaders) > 1:
        # both branches grew at once; the split persists
        return None
    return leaders[0], first


def resolve_fork(
    peers: Sequence[SimulatedPeer],
    scenario: ForkScenario,
    scheduler: EventScheduler,
    settings: Settings,
    rng: random.Random,
    race: RacePolicy | None = None,
) -> tuple[ForkScenario, list[SimulatedPeer]]:
    """Race the branches until one extends first, then converge every peer on it.

    Raises InconclusiveRound after `max_fork_rounds` rounds without a winner;
    the caller's state is unchanged and the round can be retried.
    """
    race = race or exponential_race(settings.mean_block_interval_ms)
    outcome: dict[str, str | int | None] = {"winner": None, "rounds": 0}

    def run_round() -> None:
        outcome["rounds"] = int(outcome["rounds"]) + 1
        picked = _pick_winner(race(scenario.branches, rng), settings.fork_race_timeout_ms)
        if picked is not None:
            tag, arrival_ms = picked

            def extend() -> None:
                outcome["winner"] = tag

            scheduler.schedule(arrival_ms, f"fork_block:{tag}", extend)
        elif int(outcome["rounds"]) < settings.max_fork_rounds:
            scheduler.schedule(settings.fork_race_timeout_ms, "fork_round", run_round)

    scheduler.schedule(settings.fork_resolution_delay_ms, "fork_round", run_round)
    scheduler.run()

    rounds = int(outcome["rounds"])
    if outcome["winner"] is None:
        raise InconclusiveRound(rounds)

    winner = next(b for b in scenario.branches if b.chain_tag == outcome["winner"])
    height = winner.number + 1
    converged = [
        p.model_copy(update={"block_height": max(p.block_height, height), "tip_branch": winner.chain_tag})
        for p in peers
    ]
    logger.debug("Fork resolved: chain %s after %d round(s)", winner.chain_tag, rounds)
    resolved = scenario.model_copy(
        update={"winner": winner.chain_tag, "rounds": rounds, "resolved_at_ms": scheduler.now_ms}
    )
    return resolved, converged
