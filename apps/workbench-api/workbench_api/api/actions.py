"""
Action endpoints:
- POST /actions                    - Enqueue actions (optionally wait for them)
- GET  /actions/history            - History, newest first
- POST /actions/rollback-all       - Undo every rollbackable action, newest first
- POST /actions/{id}/rollback      - Undo one action
- POST /actions/{id}/retry         - Re-issue a failed action
- POST /actions/cancel             - Cancel pending actions
"""

from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from executor import RollbackFailure
from orchestration import WorkbenchEngine
from protocol import Action

from workbench_api.deps import get_engine, http_error

router = APIRouter(prefix="/actions", tags=["actions"])


class EnqueueRequest(BaseModel):
    actions: List[Action] = Field(min_length=1)
    wait: bool = False


class ActionRef(BaseModel):
    id: str
    status: str


class CountResponse(BaseModel):
    count: int


@router.post("")
async def enqueue_actions(
    request: EnqueueRequest, engine: WorkbenchEngine = Depends(get_engine)
) -> Dict[str, Any]:
    if request.wait:
        entries = await engine.queue.enqueue_and_wait(request.actions)
        return {"entries": [entry.to_dict() for entry in entries]}
    handles = await engine.enqueue(request.actions)
    return {"actions": [ActionRef(id=h.id, status=h.status.value).model_dump() for h in handles]}


@router.get("/history")
async def get_history(engine: WorkbenchEngine = Depends(get_engine)) -> Dict[str, Any]:
    return {"entries": [entry.to_dict() for entry in engine.history()]}


@router.post("/rollback-all", response_model=CountResponse)
async def rollback_all(engine: WorkbenchEngine = Depends(get_engine)) -> CountResponse:
    return CountResponse(count=await engine.rollback_all())


@router.post("/cancel", response_model=CountResponse)
async def cancel_pending(engine: WorkbenchEngine = Depends(get_engine)) -> CountResponse:
    return CountResponse(count=await engine.cancel_pending())


@router.post("/{entry_id}/rollback")
async def rollback_action(entry_id: str, engine: WorkbenchEngine = Depends(get_engine)) -> Dict[str, Any]:
    try:
        entry = await engine.rollback(entry_id)
    except RollbackFailure as exc:
        raise http_error(exc) from exc
    return entry.to_dict()


@router.post("/{entry_id}/retry", response_model=ActionRef)
async def retry_action(entry_id: str, engine: WorkbenchEngine = Depends(get_engine)) -> ActionRef:
    try:
        handle = await engine.retry(entry_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return ActionRef(id=handle.id, status=handle.status.value)
