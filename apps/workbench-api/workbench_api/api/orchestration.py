"""
Orchestration endpoints. Commands return the state right after the command;
phase work continues in the background and is observed with GET /orchestration.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from executor import OrchestrationError
from orchestration import WorkbenchEngine

from workbench_api.deps import get_engine, http_error

router = APIRouter(prefix="/orchestration", tags=["orchestration"])


class StartRequest(BaseModel):
    prompt: str = Field(min_length=1)


class RejectRequest(BaseModel):
    reason: Optional[str] = None


class StateResponse(BaseModel):
    state: str


@router.get("")
async def get_status(engine: WorkbenchEngine = Depends(get_engine)) -> Dict[str, Any]:
    return engine.orchestration_status()


@router.post("/start", response_model=StateResponse)
async def start(request: StartRequest, engine: WorkbenchEngine = Depends(get_engine)) -> StateResponse:
    try:
        machine = engine.start_orchestration(request.prompt)
    except OrchestrationError as exc:
        raise http_error(exc) from exc
    return StateResponse(state=machine.state.value)


@router.post("/approve", response_model=StateResponse)
async def approve(engine: WorkbenchEngine = Depends(get_engine)) -> StateResponse:
    try:
        return StateResponse(state=engine.approve().value)
    except OrchestrationError as exc:
        raise http_error(exc) from exc


@router.post("/reject", response_model=StateResponse)
async def reject(request: RejectRequest, engine: WorkbenchEngine = Depends(get_engine)) -> StateResponse:
    try:
        return StateResponse(state=engine.reject(request.reason).value)
    except OrchestrationError as exc:
        raise http_error(exc) from exc


@router.post("/pause", response_model=StateResponse)
async def pause(engine: WorkbenchEngine = Depends(get_engine)) -> StateResponse:
    try:
        return StateResponse(state=engine.pause().value)
    except OrchestrationError as exc:
        raise http_error(exc) from exc


@router.post("/resume", response_model=StateResponse)
async def resume(engine: WorkbenchEngine = Depends(get_engine)) -> StateResponse:
    try:
        return StateResponse(state=engine.resume().value)
    except OrchestrationError as exc:
        raise http_error(exc) from exc


@router.post("/abort", response_model=StateResponse)
async def abort(engine: WorkbenchEngine = Depends(get_engine)) -> StateResponse:
    try:
        return StateResponse(state=engine.abort().value)
    except OrchestrationError as exc:
        raise http_error(exc) from exc
