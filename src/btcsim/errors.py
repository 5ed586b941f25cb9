"""Recoverable simulation errors.

None of these end a session. The host can retry the step or call reset().
"""

from __future__ import annotations

from typing import Any


class SimulationError(ValueError):
    """Base class for errors raised by step actions."""

    code = "simulation_error"
    status_code = 409

    def context(self) -> dict[str, Any]:
        """Extra fields rendered next to the error message."""
        return {}


class StepNotAllowed(SimulationError):
    code = "step_not_allowed"

    def __init__(self, action: str, current_step: int, required_step: int) -> None:
        super().__init__(
            f"Action '{action}' belongs to step {required_step}; session is at step {current_step}"
        )
        self.action = action
        self.current_step = current_step
        self.required_step = required_step

    def context(self) -> dict[str, Any]:
        return {"current_step": self.current_step, "required_step": self.required_step}


class UnknownAction(SimulationError):
    code = "unknown_action"
    status_code = 404

    def __init__(self, action: str, available: list[str]) -> None:
        super().__init__(f"Unknown action '{action}'")
        self.action = action
        self.available = available

    def context(self) -> dict[str, Any]:
        return {"available": self.available}


class SimulationBusy(SimulationError):
    code = "simulation_busy"

    def __init__(self) -> None:
        super().__init__("A step is already being processed")


class InsufficientFunds(SimulationError):
    code = "insufficient_funds"
    status_code = 422

    def __init__(self, required: Any, available: Any) -> None:
        super().__init__(f"Insufficient funds: need {required}, have {available}")
        self.required = required
        self.available = available

    def context(self) -> dict[str, Any]:
        return {"required": str(self.required), "available": str(self.available)}


class UTXOAlreadySpent(SimulationError):
    code = "utxo_already_spent"

    def __init__(self, utxo_id: str) -> None:
        super().__init__(f"UTXO {utxo_id} has already been spent")
        self.utxo_id = utxo_id

    def context(self) -> dict[str, Any]:
        return {"utxo_id": self.utxo_id}


class ConsensusRejected(SimulationError):
    code = "consensus_rejected"

    def __init__(self, votes: list[Any], accepts: int, total: int) -> None:
        super().__init__(f"Network rejected the proposal ({accepts}/{total} accepted)")
        self.votes = votes
        self.accepts = accepts
        self.total = total

    def context(self) -> dict[str, Any]:
        return {
            "accepts": self.accepts,
            "total": self.total,
            "votes": [v.model_dump(mode="json") for v in self.votes],
        }


class InconclusiveRound(SimulationError):
    code = "inconclusive_round"

    def __init__(self, rounds: int) -> None:
        super().__init__(f"No branch found a block after {rounds} rounds; try again")
        self.rounds = rounds

    def context(self) -> dict[str, Any]:
        return {"rounds": self.rounds}


class InvalidDerivationPath(SimulationError):
    code = "invalid_derivation_path"
    status_code = 422

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Invalid derivation path '{path}': {reason}")
        self.path = path

    def context(self) -> dict[str, Any]:
        return {"path": self.path}


class InvalidAddress(SimulationError):
    code = "invalid_address"
    status_code = 422

    def __init__(self, address: str, reason: str) -> None:
        super().__init__(f"Invalid address '{address}': {reason}")
        self.address = address

    def context(self) -> dict[str, Any]:
        return {"address": self.address}


class NoActivePeers(SimulationError):
    code = "no_active_peers"

    def __init__(self) -> None:
        super().__init__("No active peers; reconnect the network or reset")
