"""Simulations API: create sessions and drive them step by step."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.encoders import jsonable_encoder
from pydantic import ValidationError

from btcsim.simulations.registry import SIMULATOR_KINDS, SimulationEntry, SimulationRegistry
from btcsim.simulations.schemas import (
    ActionInfo,
    ActionRequest,
    CreateSimulationRequest,
    SimulationResponse,
    SimulatorKindInfo,
    SimulatorKindsResponse,
)

router = APIRouter(prefix="/api/v1/simulations", tags=["Simulations"])


def get_registry(request: Request) -> SimulationRegistry:
    return request.app.state.registry


def _entry(registry: SimulationRegistry, session_id: str) -> SimulationEntry:
    try:
        return registry.get(session_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Simulation not found") from None


def _to_response(entry: SimulationEntry) -> SimulationResponse:
    simulator = entry.simulator
    session = simulator.session
    return SimulationResponse(
        id=entry.id,
        kind=entry.kind,
        current_step=session.current_step,
        final_step=simulator.final_step,
        completed=session.challenge.completed,
        completions=entry.completions,
        available_actions=simulator.available_actions(),
        state=simulator.state.model_dump(mode="json"),
    )


@router.get("/kinds")
async def list_kinds() -> SimulatorKindsResponse:
    """Every simulator kind with its step actions."""
    kinds = [
        SimulatorKindInfo(
            kind=kind,
            final_step=cls.final_step,
            actions=[
                ActionInfo(
                    name=action.name,
                    step=action.step,
                    until_step=action.until_step,
                    description=action.description,
                    params=action.params.model_json_schema(),
                )
                for action in cls.actions.values()
            ],
        )
        for kind, cls in SIMULATOR_KINDS.items()
    ]
    return SimulatorKindsResponse(kinds=kinds)


@router.post("", status_code=201)
async def create_simulation(
    body: CreateSimulationRequest,
    registry: SimulationRegistry = Depends(get_registry),  # noqa: B008
) -> SimulationResponse:
    try:
        entry = registry.create(body.kind)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown simulator kind '{body.kind}'") from None
    return _to_response(entry)


@router.get("/{session_id}")
async def get_simulation(
    session_id: str,
    registry: SimulationRegistry = Depends(get_registry),  # noqa: B008
) -> SimulationResponse:
    return _to_response(_entry(registry, session_id))


@router.post("/{session_id}/actions/{action}")
async def perform_action(
    session_id: str,
    action: str,
    body: ActionRequest | None = None,
    registry: SimulationRegistry = Depends(get_registry),  # noqa: B008
) -> SimulationResponse:
    """Run one step action. SimulationError subclasses are rendered by the global handler."""
    entry = _entry(registry, session_id)
    params = body.params if body is not None else {}
    try:
        registry.dispatch(entry.id, action, params)
    except ValidationError as exc:
        errors = exc.errors(include_url=False, include_context=False)
        raise HTTPException(status_code=422, detail=jsonable_encoder(errors)) from None
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Not found: {exc.args[0]}") from None
    return _to_response(entry)


@router.post("/{session_id}/reset")
async def reset_simulation(
    session_id: str,
    registry: SimulationRegistry = Depends(get_registry),  # noqa: B008
) -> SimulationResponse:
    entry = _entry(registry, session_id)
    registry.reset(entry.id)
    return _to_response(entry)


@router.delete("/{session_id}", status_code=204)
async def delete_simulation(
    session_id: str,
    registry: SimulationRegistry = Depends(get_registry),  # noqa: B008
) -> Response:
    _entry(registry, session_id)
    registry.remove(session_id)
    return Response(status_code=204)
