"""Request/response schemas for the simulations API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class CreateSimulationRequest(BaseModel):
    kind: str = Field(..., description="script, transaction, node or wallet")


class ActionRequest(BaseModel):
    params: dict[str, Any] = Field(default_factory=dict)


class ActionInfo(BaseModel):
    name: str
    step: int
    until_step: int | None = None
    description: str
    params: dict[str, Any]


class SimulatorKindInfo(BaseModel):
    kind: str
    final_step: int
    actions: list[ActionInfo]


class SimulatorKindsResponse(BaseModel):
    kinds: list[SimulatorKindInfo]


class SimulationResponse(BaseModel):
    id: str
    kind: str
    current_step: int
    final_step: int
    completed: bool
    completions: int
    available_actions: list[str]
    state: dict[str, Any]
