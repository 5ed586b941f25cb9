"""Pydantic models for simulator sessions."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class ChallengeState(BaseModel):
    model_config = ConfigDict(frozen=True)

    completed: bool = False
    success: bool = False
    message: str = ""


class SimulationSession(BaseModel):
    """Step index and guard flags for one simulator instance."""

    model_config = ConfigDict(frozen=True)

    current_step: int = 1
    processing: bool = False
    challenge: ChallengeState = ChallengeState()


class SimulationState(BaseModel):
    """Base for every simulator's state. Subclasses add their artifacts."""

    model_config = ConfigDict(frozen=True)

    session: SimulationSession = SimulationSession()

    def with_session(self, session: SimulationSession) -> SimulationState:
        return self.model_copy(update={"session": session})
