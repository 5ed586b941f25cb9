"""End-to-end runs of each challenge through its step actions."""

from __future__ import annotations

import random
from decimal import Decimal

import pytest

from btcsim.config import Settings
from btcsim.errors import ConsensusRejected, InsufficientFunds, NoActivePeers, StepNotAllowed
from btcsim.network.schemas import PeerKind
from btcsim.network.simulator import NodeChallenge
from btcsim.script.simulator import ScriptChallenge
from btcsim.transactions.simulator import TransactionChallenge
from btcsim.transactions.simulator import mine_block as mine_next_block
from btcsim.wallet.schemas import WalletType
from btcsim.wallet.simulator import WalletChallenge


def accept_all(peer, subject, proposal):
    return True


def reject_all(peer, subject, proposal):
    return False


def a_wins(branches, rng):
    return {"A": 100, "B": 200}


@pytest.fixture
def completions():
    return []


def _make(cls, settings, completions, seed=0, **kwargs):
    return cls(
        settings,
        lambda: completions.append(cls.kind),
        rng=random.Random(seed),
        randbytes=random.Random(seed).randbytes,
        **kwargs,
    )


class TestScriptChallenge:
    def test_full_run(self, settings, completions):
        sim = _make(ScriptChallenge, settings, completions)
        sim.perform("show_analogy")
        assert sim.state.chest.locked
        sim.perform("create_scripts")
        state = sim.perform("run_to_end")
        assert state.result.valid
        assert not state.chest.locked
        assert state.session.current_step == 4
        assert state.session.challenge.completed
        assert completions == ["script"]

    def test_step_by_step(self, settings, completions):
        sim = _make(ScriptChallenge, settings, completions)
        sim.perform("show_analogy")
        sim.perform("create_scripts")
        for expected in range(1, 8):
            state = sim.perform("execute_step")
            assert len(state.machine.trace) == expected
            assert state.result is None
        state = sim.perform("execute_step")
        assert state.result.valid
        assert completions == ["script"]

    @pytest.mark.parametrize("tamper", ["swap_order", "wrong_public_key"])
    def test_tampered_script_does_not_complete(self, settings, completions, tamper):
        sim = _make(ScriptChallenge, settings, completions)
        sim.perform("show_analogy")
        sim.perform("create_scripts", tamper=tamper)
        state = sim.perform("run_to_end")
        assert not state.result.valid
        assert state.session.current_step == 3
        assert completions == []

    def test_wrong_key_fails_at_equalverify(self, settings, completions):
        sim = _make(ScriptChallenge, settings, completions)
        sim.perform("show_analogy")
        sim.perform("create_scripts", tamper="wrong_public_key")
        state = sim.perform("run_to_end")
        assert state.result.trace[-1].operation == "OP_EQUALVERIFY"

    def test_unknown_tamper_rejected(self, settings, completions):
        sim = _make(ScriptChallenge, settings, completions)
        sim.perform("show_analogy")
        with pytest.raises(ValueError):
            sim.perform("create_scripts", tamper="melt_lock")
        assert sim.session.current_step == 2

    def test_cannot_skip_ahead(self, settings, completions):
        sim = _make(ScriptChallenge, settings, completions)
        with pytest.raises(StepNotAllowed):
            sim.perform("run_to_end")


class TestTransactionChallenge:
    def _run_to(self, sim, last):
        for action in ["generate_keys", "create_transaction", "sign_transaction", "validate_script",
                       "broadcast", "mine_block"][:last]:
            sim.perform(action)
        return sim.state

    def test_initial_utxos(self, settings, completions):
        sim = _make(TransactionChallenge, settings, completions)
        state = self._run_to(sim, 1)
        assert [u.amount for u in state.utxos] == [Decimal("2.5"), Decimal("1.0"), Decimal("0.8")]
        assert all(u.owner_address == state.sender.address for u in state.utxos)

    def test_default_payment(self, settings, completions):
        sim = _make(TransactionChallenge, settings, completions)
        state = self._run_to(sim, 2)
        tx = state.transaction
        assert [i.amount for i in tx.inputs] == [Decimal("2.5")]
        assert [o.amount for o in tx.outputs] == [Decimal("1.5"), Decimal("0.999")]
        assert tx.fee == Decimal("0.001")

    def test_full_run(self, settings, completions):
        sim = _make(TransactionChallenge, settings, completions)
        state = self._run_to(sim, 6)
        assert state.script_result.valid
        assert state.mempool == []
        assert len(state.blocks) == 1
        assert state.blocks[0].transactions[0].id == state.transaction.id
        assert len(state.utxos) == 5
        assert [u.spent for u in state.utxos] == [True, False, False, False, False]
        assert state.session.current_step == 7
        assert completions == ["transaction"]

    def test_next_block_links_to_previous_header(self, settings, completions):
        sim = _make(TransactionChallenge, settings, completions)
        state = mine_next_block(self._run_to(sim, 6), sim.context)
        first, second = state.blocks
        assert second.number == first.number + 1
        assert second.previous_hash == first.block_hash()
        assert first.block_hash() != first.merkle_root

    def test_custom_amount(self, settings, completions):
        sim = _make(TransactionChallenge, settings, completions)
        sim.perform("generate_keys")
        state = sim.perform("create_transaction", amount="3", fee="0.01")
        assert [i.previous_utxo_id for i in state.transaction.inputs] == [u.id for u in state.utxos[:2]]
        assert state.transaction.outputs[1].amount == Decimal("0.49")

    def test_insufficient_funds_keeps_step(self, settings, completions):
        sim = _make(TransactionChallenge, settings, completions)
        sim.perform("generate_keys")
        with pytest.raises(InsufficientFunds):
            sim.perform("create_transaction", amount="10")
        assert sim.session.current_step == 2
        assert sim.state.transaction is None

    def test_negative_fee_rejected(self, settings, completions):
        sim = _make(TransactionChallenge, settings, completions)
        sim.perform("generate_keys")
        with pytest.raises(ValueError):
            sim.perform("create_transaction", fee="-1")


class TestNodeChallenge:
    def _sim(self, settings, completions, **kwargs):
        kwargs.setdefault("validation_policy", accept_all)
        kwargs.setdefault("race_policy", a_wins)
        return _make(NodeChallenge, settings, completions, **kwargs)

    def test_full_run(self, settings, completions):
        sim = self._sim(settings, completions)
        sim.perform("setup_node", kind="light")
        assert sim.state.user_node.kind is PeerKind.LIGHT

        state = sim.perform("sync_node")
        assert state.user_node.status == "synced"
        assert [s.percent for s in state.sync_history] == [20, 40, 60, 80, 100]

        state = sim.perform("broadcast_transaction")
        assert all(state.transaction in p.mempool for p in state.peers)

        state = sim.perform("propose_block")
        assert len(state.block.transactions) == 3
        assert all(p.block_height == state.block.number for p in state.peers)
        assert all(p.mempool == [] for p in state.peers)

        state = sim.perform("create_fork")
        assert len(state.fork.branches) == 2

        state = sim.perform("resolve_fork")
        assert state.fork.winner == "A"
        assert {p.tip_branch for p in state.peers} == {"A"}
        assert len({p.block_height for p in state.peers}) == 1
        assert state.session.current_step == 7
        assert completions == ["node"]

    def test_rejected_broadcast_can_be_retried(self, settings, completions):
        verdicts = iter([False] * 100)

        def flaky(peer, subject, proposal):
            return next(verdicts, True)

        sim = self._sim(settings, completions, validation_policy=flaky)
        sim.perform("setup_node")
        sim.perform("sync_node")
        before = sim.state
        with pytest.raises(ConsensusRejected):
            sim.perform("broadcast_transaction")
        assert sim.state is before
        assert sim.session.current_step == 3

    def test_rejected_block_changes_nothing(self, settings, completions):
        sim = self._sim(settings, completions)
        sim.perform("setup_node")
        sim.perform("sync_node")
        sim.perform("broadcast_transaction")
        sim.context.validation_policy = reject_all
        heights = [p.block_height for p in sim.state.peers]
        with pytest.raises(ConsensusRejected) as exc_info:
            sim.perform("propose_block")
        assert exc_info.value.total == len(heights)
        assert [p.block_height for p in sim.state.peers] == heights

    def test_disconnected_peer_skips_vote(self, settings, completions):
        sim = self._sim(settings, completions)
        sim.perform("setup_node")
        sim.perform("sync_node")
        sim.perform("disconnect_peer", peer_id="node_4")
        state = sim.perform("broadcast_transaction")
        assert "node_4" not in {v.peer_id for v in state.transaction_outcome.votes}
        assert state.transaction_outcome.decision.total == len(state.peers) - 1

    def test_whole_network_offline_is_recoverable(self, settings, completions):
        sim = self._sim(settings, completions)
        sim.perform("setup_node")
        sim.perform("sync_node")
        sim.perform("broadcast_transaction")
        for peer in sim.state.peers:
            sim.perform("disconnect_peer", peer_id=peer.id)
        before = sim.state
        with pytest.raises(NoActivePeers):
            sim.perform("propose_block")
        assert sim.state is before
        assert sim.session.current_step == 4
        sim.reset()
        assert sim.session.current_step == 1

    def test_sync_interval_is_configurable(self, completions):
        sim = self._sim(Settings(sync_interval_ms=100), completions)
        sim.perform("setup_node")
        assert sim.perform("sync_node").clock_ms == 500

    def test_disconnect_not_available_before_sync(self, settings, completions):
        sim = self._sim(settings, completions)
        sim.perform("setup_node")
        with pytest.raises(StepNotAllowed):
            sim.perform("disconnect_peer", peer_id="node_1")

    def test_virtual_clock_advances(self, settings, completions):
        sim = self._sim(settings, completions)
        sim.perform("setup_node")
        state = sim.perform("sync_node")
        assert state.clock_ms == 2_500


class TestWalletChallenge:
    ACTIONS = ["start", "generate_seed", "derive_master", "build_tree", "generate_addresses", "create_watch_only"]

    def test_full_run(self, settings, completions):
        sim = _make(WalletChallenge, settings, completions)
        sim.perform("select_wallet_type", wallet_type="hardware")
        sim.perform("select_wallet_type", wallet_type="paper")
        for action in self.ACTIONS:
            sim.perform(action)
        state = sim.state
        assert state.wallet_type is WalletType.PAPER
        assert state.wallet_info.name == "Paper Wallet"
        assert len(state.seed_phrase) == 12
        assert state.entropy.bits == 128
        assert state.master_xprv.startswith("xprv")
        assert state.tree.account.path == "m/44'/0'/0'"
        assert len(state.addresses) == 5
        assert len(state.watch_only.addresses) == 3
        assert state.watch_only.addresses[0].address == state.addresses[0].address
        assert state.session.current_step == 7
        assert completions == ["wallet"]

    def test_same_entropy_same_wallet(self, settings, completions):
        first = _make(WalletChallenge, settings, completions, seed=9)
        second = _make(WalletChallenge, settings, completions, seed=9)
        for sim in (first, second):
            for action in self.ACTIONS:
                sim.perform(action)
        assert first.state == second.state

    def test_wallet_type_locked_after_start(self, settings, completions):
        sim = _make(WalletChallenge, settings, completions)
        sim.perform("start")
        with pytest.raises(StepNotAllowed):
            sim.perform("select_wallet_type", wallet_type="custodial")

    def test_unknown_wallet_type(self, settings, completions):
        sim = _make(WalletChallenge, settings, completions)
        with pytest.raises(ValueError):
            sim.perform("select_wallet_type", wallet_type="shoebox")

    def test_reset_and_rerun(self, settings, completions):
        sim = _make(WalletChallenge, settings, completions)
        for action in self.ACTIONS:
            sim.perform(action)
        sim.reset()
        assert sim.state.seed_phrase == []
        for action in self.ACTIONS:
            sim.perform(action)
        assert completions == ["wallet", "wallet"]
