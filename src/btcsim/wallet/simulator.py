"""Wallet challenge: from entropy to a watch-only HD wallet.

Steps:
  1 select_wallet_type (any number of times), start  -> 2
  2 generate_seed                                     -> 3
  3 derive_master                                     -> 4
  4 build_tree                                        -> 5
  5 generate_addresses                                -> 6
  6 create_watch_only                                 -> 7, challenge complete
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from btcsim.keys.generator import generate_entropy, seed_phrase_from_entropy
from btcsim.keys.schemas import Entropy
from btcsim.session.controller import (
    Action,
    SimulationContext,
    StepSimulator,
    action_table,
    advance,
    complete,
)
from btcsim.session.schemas import SimulationState
from btcsim.wallet.hd import (
    WALLET_TYPES,
    build_tree as derive_tree,
    build_watch_only,
    derive_addresses,
    derive_master as master_from_phrase,
    extended_private_key,
)
from btcsim.wallet.schemas import (
    GeneratedAddress,
    HDNode,
    HDTree,
    WalletType,
    WalletTypeInfo,
    WatchOnlyWallet,
)

FINAL_STEP = 7


class WalletChallengeState(SimulationState):
    wallet_type: WalletType = WalletType.SOFTWARE
    wallet_info: WalletTypeInfo = WALLET_TYPES[WalletType.SOFTWARE]
    entropy: Entropy | None = None
    seed_phrase: list[str] = []
    master: HDNode | None = None
    master_xprv: str = ""
    tree: HDTree | None = None
    addresses: list[GeneratedAddress] = []
    watch_only: WatchOnlyWallet | None = None


class WalletTypeParams(BaseModel):
    model_config = ConfigDict(extra="forbid")

    wallet_type: WalletType


def select_wallet_type(
    state: WalletChallengeState,
    ctx: SimulationContext,
    wallet_type: WalletType,
) -> WalletChallengeState:
    return state.model_copy(update={"wallet_type": wallet_type, "wallet_info": WALLET_TYPES[wallet_type]})


def start(state: WalletChallengeState, ctx: SimulationContext) -> WalletChallengeState:
    return state.model_copy(update={"session": advance(state.session, 2)})


def generate_seed(state: WalletChallengeState, ctx: SimulationContext) -> WalletChallengeState:
    entropy = generate_entropy(ctx.settings.seed_entropy_bits, ctx.randbytes)
    phrase = seed_phrase_from_entropy(entropy.randomness, ctx.settings.seed_word_count)
    return state.model_copy(
        update={"entropy": entropy, "seed_phrase": phrase, "session": advance(state.session, 3)}
    )


def derive_master(state: WalletChallengeState, ctx: SimulationContext) -> WalletChallengeState:
    master = master_from_phrase(state.seed_phrase)
    return state.model_copy(
        update={
            "master": master,
            "master_xprv": extended_private_key(master),
            "session": advance(state.session, 4),
        }
    )


def build_tree(state: WalletChallengeState, ctx: SimulationContext) -> WalletChallengeState:
    tree = derive_tree(state.master, ctx.settings.hd_purpose, ctx.settings.hd_coin_type)
    return state.model_copy(update={"tree": tree, "session": advance(state.session, 5)})


def generate_addresses(state: WalletChallengeState, ctx: SimulationContext) -> WalletChallengeState:
    settings = ctx.settings
    addresses = derive_addresses(
        state.master,
        receiving=settings.receiving_address_count,
        change=settings.change_address_count,
        purpose=settings.hd_purpose,
        coin_type=settings.hd_coin_type,
    )
    return state.model_copy(update={"addresses": addresses, "session": advance(state.session, 6)})


def create_watch_only(state: WalletChallengeState, ctx: SimulationContext) -> WalletChallengeState:
    watched = state.addresses[: ctx.settings.watch_only_address_count]
    session = complete(
        state.session,
        FINAL_STEP,
        "Congratulations! You've mastered Bitcoin wallet technology from seed phrases to HD derivation!",
    )
    return state.model_copy(update={"watch_only": build_watch_only(state.master, watched), "session": session})


class WalletChallenge(StepSimulator[WalletChallengeState]):
    kind = "wallet"
    final_step = FINAL_STEP
    state_model = WalletChallengeState
    actions = action_table(
        Action("select_wallet_type", select_wallet_type, step=1, params=WalletTypeParams,
               description="Pick software, hardware, custodial or paper"),
        Action("start", start, step=1, description="Begin creating the wallet"),
        Action("generate_seed", generate_seed, step=2, description="Turn entropy into a seed phrase"),
        Action("derive_master", derive_master, step=3, description="Derive the master key"),
        Action("build_tree", build_tree, step=4, description="Derive the BIP44 account tree"),
        Action("generate_addresses", generate_addresses, step=5, description="Derive receiving and change addresses"),
        Action("create_watch_only", create_watch_only, step=6, description="Export public data only"),
    )
