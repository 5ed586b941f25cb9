"""Unit tests for fork creation and longest-chain resolution."""

from __future__ import annotations

import random

import pytest

from btcsim.errors import InconclusiveRound
from btcsim.network.consensus import build_network, mark_inactive, tip_height
from btcsim.network.forks import create_fork, exponential_race, resolve_fork
from btcsim.network.scheduler import EventScheduler
from btcsim.network.schemas import PeerKind


def a_wins(branches, rng):
    return {"A": 1_000, "B": 5_000}


def b_wins(branches, rng):
    return {"A": None, "B": 42}


def nobody(branches, rng):
    return {"A": None, "B": None}


@pytest.fixture
def peers(settings, rng):
    return build_network(settings, rng, PeerKind.FULL)


@pytest.fixture
def fork(peers, rng):
    return create_fork(peers, rng)


class TestCreateFork:
    def test_two_branches_at_same_height(self, fork, peers):
        scenario, _ = fork
        assert [b.chain_tag for b in scenario.branches] == ["A", "B"]
        assert scenario.branches[0].number == scenario.branches[1].number == tip_height(peers) + 1
        assert scenario.winner is None

    def test_supporters_are_disjoint_and_cover_active_peers(self, fork, peers):
        scenario, _ = fork
        a, b = (set(branch.supporters) for branch in scenario.branches)
        assert not a & b
        assert a | b == {p.name for p in peers}

    def test_each_miner_backs_its_own_branch(self, fork):
        scenario, _ = fork
        for branch in scenario.branches:
            assert branch.mined_by in branch.supporters
        assert {b.mined_by for b in scenario.branches} == {"Publishing House Alpha", "Publishing House Beta"}

    def test_split_is_even(self, fork):
        scenario, _ = fork
        sizes = sorted(len(b.supporters) for b in scenario.branches)
        assert sizes[1] - sizes[0] <= 1

    def test_peers_follow_their_branch(self, fork):
        scenario, split = fork
        for branch in scenario.branches:
            for peer in split:
                if peer.name in branch.supporters:
                    assert peer.tip_branch == branch.chain_tag
                    assert peer.block_height == branch.number

    def test_inactive_peers_stay_out(self, peers, rng):
        offline = mark_inactive(peers, "node_1")
        scenario, _ = create_fork(offline, rng)
        supporters = {name for b in scenario.branches for name in b.supporters}
        assert "University Library" not in supporters


class TestResolveFork:
    def test_first_block_wins_and_everyone_converges(self, fork, settings, rng):
        scenario, split = fork
        scheduler = EventScheduler()
        resolved, converged = resolve_fork(split, scenario, scheduler, settings, rng, a_wins)
        assert resolved.winner == "A"
        assert resolved.rounds == 1
        height = scenario.branches[0].number + 1
        assert all(p.tip_branch == "A" for p in converged)
        assert all(p.block_height == height for p in converged)
        assert scheduler.now_ms == settings.fork_resolution_delay_ms + 1_000

    def test_late_branch_cannot_win(self, fork, settings, rng):
        scenario, split = fork
        resolved, _ = resolve_fork(split, scenario, EventScheduler(), settings, rng, b_wins)
        assert resolved.winner == "B"

    def test_inconclusive_rounds_repeat_then_raise(self, fork, settings, rng):
        scenario, split = fork
        with pytest.raises(InconclusiveRound) as exc_info:
            resolve_fork(split, scenario, EventScheduler(), settings, rng, nobody)
        assert exc_info.value.rounds == settings.max_fork_rounds

    def test_timeout_makes_round_inconclusive(self, fork, settings, rng):
        scenario, split = fork
        late = settings.fork_race_timeout_ms + 1
        calls = []

        def slow_then_fast(branches, rng):
            calls.append(1)
            if len(calls) == 1:
                return {"A": late, "B": late}
            return {"A": 10, "B": 20}

        resolved, _ = resolve_fork(split, scenario, EventScheduler(), settings, rng, slow_then_fast)
        assert resolved.rounds == 2
        assert resolved.winner == "A"

    def test_simultaneous_blocks_are_inconclusive(self, fork, settings, rng):
        scenario, split = fork
        outcomes = iter([{"A": 5, "B": 5}, {"A": 9, "B": 3}])
        resolved, _ = resolve_fork(split, scenario, EventScheduler(), settings, rng, lambda b, r: next(outcomes))
        assert resolved.winner == "B"
        assert resolved.rounds == 2

    def test_default_race_picks_both_branches(self, fork, settings):
        scenario, split = fork
        winners = set()
        for seed in range(40):
            resolved, _ = resolve_fork(split, scenario, EventScheduler(), settings, random.Random(seed))
            winners.add(resolved.winner)
        assert winners == {"A", "B"}

    def test_exponential_race_returns_every_branch(self, fork):
        scenario, _ = fork
        arrivals = exponential_race(600_000)(scenario.branches, random.Random(1))
        assert set(arrivals) == {"A", "B"}
        assert all(t >= 0 for t in arrivals.values())
