"""In-memory registry of live simulator sessions.

Each session owns one simulator instance. The registry is process-local and
bounded: once `max_sessions` is reached the least recently used session is
evicted. Single-threaded access via the asyncio event loop.
"""

import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any

import structlog

from btcsim.config import Settings
from btcsim.network.simulator import NodeChallenge
from btcsim.script.simulator import ScriptChallenge
from btcsim.session.controller import StepSimulator
from btcsim.transactions.simulator import TransactionChallenge
from btcsim.wallet.simulator import WalletChallenge

logger = structlog.get_logger()

SIMULATOR_KINDS: dict[str, type[StepSimulator[Any]]] = {
    cls.kind: cls for cls in (ScriptChallenge, TransactionChallenge, NodeChallenge, WalletChallenge)
}


@dataclass
class SimulationEntry:
    """One live simulator and its bookkeeping."""

    id: str
    kind: str
    simulator: StepSimulator[Any]
    created_at: float = field(default_factory=time.time)
    completions: int = 0


class SimulationRegistry:
    """Creates, looks up and evicts simulator sessions."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._entries: OrderedDict[str, SimulationEntry] = OrderedDict()
        self.completed_total = 0

    @property
    def session_count(self) -> int:
        return len(self._entries)

    def create(self, kind: str, **simulator_kwargs: Any) -> SimulationEntry:
        """Start a new session. Raises KeyError for an unknown kind."""
        simulator_cls = SIMULATOR_KINDS.get(kind)
        if simulator_cls is None:
            raise KeyError(kind)

        while len(self._entries) >= self.settings.max_sessions:
            evicted_id, _ = self._entries.popitem(last=False)
            logger.info("simulation_evicted", session_id=evicted_id)

        session_id = uuid.uuid4().hex
        entry = SimulationEntry(id=session_id, kind=kind, simulator=None)  # type: ignore[arg-type]

        def on_complete() -> None:
            entry.completions += 1
            self.completed_total += 1
            logger.info("challenge_completed", kind=kind, session_id=session_id)

        entry.simulator = simulator_cls(self.settings, on_complete, **simulator_kwargs)
        self._entries[session_id] = entry
        logger.info("simulation_created", kind=kind, session_id=session_id)
        return entry

    def get(self, session_id: str) -> SimulationEntry:
        """Raises KeyError when the session does not exist (or was evicted)."""
        entry = self._entries[session_id]
        self._entries.move_to_end(session_id)
        return entry

    def dispatch(self, session_id: str, action: str, params: dict[str, Any] | None = None) -> SimulationEntry:
        entry = self.get(session_id)
        entry.simulator.perform(action, **(params or {}))
        return entry

    def reset(self, session_id: str) -> SimulationEntry:
        entry = self.get(session_id)
        entry.simulator.reset()
        return entry

    def remove(self, session_id: str) -> None:
        del self._entries[session_id]
        logger.info("simulation_removed", session_id=session_id)
