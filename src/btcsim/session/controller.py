"""Step-sequenced session controller.

A simulator is a numbered sequence of steps. Each step offers one primary
action; the action runs only while the session sits on that step and no other
action is in progress. Steps only move forward; reset() is the way back.

Step handlers are pure: handler(state, context, **params) -> new state.
If a handler raises, the previous state is kept.
"""

from __future__ import annotations

import random
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, ClassVar, Generic, TypeVar

import structlog
from pydantic import BaseModel, ConfigDict

from btcsim.config import Settings, get_settings
from btcsim.errors import SimulationBusy, StepNotAllowed, UnknownAction
from btcsim.session.schemas import ChallengeState, SimulationSession, SimulationState

logger = structlog.get_logger()

StateT = TypeVar("StateT", bound=SimulationState)


# --- Pure session transitions ---


def advance(session: SimulationSession, to_step: int) -> SimulationSession:
    """Move forward to `to_step`. Going back (or staying) is a no-op."""
    if to_step <= session.current_step:
        return session
    return session.model_copy(update={"current_step": to_step})


def reset_session() -> SimulationSession:
    return SimulationSession()


def mark_processing(session: SimulationSession, processing: bool) -> SimulationSession:
    return session.model_copy(update={"processing": processing})


def complete(
    session: SimulationSession,
    final_step: int,
    message: str,
    success: bool = True,
) -> SimulationSession:
    """Enter the terminal step with the challenge marked complete."""
    session = advance(session, final_step)
    return session.model_copy(
        update={"challenge": ChallengeState(completed=True, success=success, message=message)}
    )


def require_step(session: SimulationSession, action: str, step: int, until_step: int | None = None) -> None:
    """Raise StepNotAllowed unless step <= current_step <= until_step."""
    last = step if until_step is None else until_step
    if not step <= session.current_step <= last:
        raise StepNotAllowed(action, session.current_step, step)


# --- Simulator plumbing ---


class NoParams(BaseModel):
    model_config = ConfigDict(extra="forbid")


@dataclass
class SimulationContext:
    """Collaborators a step handler may use. Everything random is injectable."""

    settings: Settings
    rng: random.Random
    randbytes: Callable[[int], bytes]
    validation_policy: Callable[..., bool] | None = None
    race_policy: Callable[..., Any] | None = None


@dataclass(frozen=True)
class Action:
    name: str
    handler: Callable[..., Any]
    step: int
    params: type[BaseModel] = NoParams
    until_step: int | None = None
    description: str = ""


def action_table(*actions: Action) -> dict[str, Action]:
    """Index actions by name, keeping step order."""
    return {action.name: action for action in sorted(actions, key=lambda a: a.step)}


class StepSimulator(Generic[StateT]):
    """Holds one simulator's state and runs step actions against it.

    Host code constructs a simulator with settings and an on_complete callback,
    then only calls perform() / reset() and reads `state`.
    """

    kind: ClassVar[str]
    final_step: ClassVar[int]
    state_model: ClassVar[type[SimulationState]]
    actions: ClassVar[dict[str, Action]]

    def __init__(
        self,
        settings: Settings | None = None,
        on_complete: Callable[[], None] | None = None,
        *,
        rng: random.Random | None = None,
        randbytes: Callable[[int], bytes] | None = None,
        validation_policy: Callable[..., bool] | None = None,
        race_policy: Callable[..., Any] | None = None,
    ) -> None:
        self.context = SimulationContext(
            settings=settings or get_settings(),
            rng=rng or random.Random(),
            randbytes=randbytes or secrets.token_bytes,
            validation_policy=validation_policy,
            race_policy=race_policy,
        )
        self._on_complete = on_complete
        self._completion_fired = False
        self._state: StateT = self.initial_state()

    def initial_state(self) -> StateT:
        return self.state_model()  # type: ignore[return-value]

    @property
    def state(self) -> StateT:
        return self._state

    @property
    def session(self) -> SimulationSession:
        return self._state.session

    def available_actions(self) -> list[str]:
        """Actions the current step would accept."""
        session = self._state.session
        if session.processing:
            return []
        last = {name: a.until_step if a.until_step is not None else a.step for name, a in self.actions.items()}
        return [
            name
            for name, action in self.actions.items()
            if action.step <= session.current_step <= last[name]
        ]

    def perform(self, action_name: str, **params: Any) -> StateT:
        """Run one step action. Raises SimulationError subclasses on refusal."""
        action = self.actions.get(action_name)
        if action is None:
            raise UnknownAction(action_name, sorted(self.actions))

        previous = self._state
        if previous.session.processing:
            raise SimulationBusy()
        require_step(previous.session, action.name, action.step, action.until_step)
        kwargs = action.params.model_validate(params).model_dump()

        self._state = previous.with_session(mark_processing(previous.session, True))  # type: ignore[assignment]
        try:
            next_state = action.handler(self._state, self.context, **kwargs)
        except Exception:
            self._state = previous
            raise

        self._state = next_state.with_session(mark_processing(next_state.session, False))
        logger.info(
            "step_action_performed",
            simulator=self.kind,
            action=action.name,
            step=self._state.session.current_step,
        )
        self._fire_completion()
        return self._state

    def reset(self) -> StateT:
        """Discard every artifact and return to step 1."""
        if self._state.session.processing:
            raise SimulationBusy()
        self._state = self.initial_state()
        self._completion_fired = False
        logger.info("simulator_reset", simulator=self.kind)
        return self._state

    def _fire_completion(self) -> None:
        if self._completion_fired or not self._state.session.challenge.completed:
            return
        self._completion_fired = True
        logger.info("challenge_completed", simulator=self.kind)
        if self._on_complete is not None:
            self._on_complete()
