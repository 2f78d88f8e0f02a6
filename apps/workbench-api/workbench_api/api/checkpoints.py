from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from orchestration import WorkbenchEngine

from workbench_api.deps import get_engine

router = APIRouter(prefix="/checkpoints", tags=["checkpoints"])


class CreateCheckpointRequest(BaseModel):
    name: str = Field(min_length=1)
    files: Optional[List[str]] = None
    description: str = ""


@router.get("")
async def list_checkpoints(engine: WorkbenchEngine = Depends(get_engine)) -> Dict[str, Any]:
    return {"checkpoints": [c.to_dict() for c in engine.checkpoints.list()]}


@router.post("")
async def create_checkpoint(
    request: CreateCheckpointRequest, engine: WorkbenchEngine = Depends(get_engine)
) -> Dict[str, Any]:
    checkpoint = await engine.create_checkpoint(request.name, request.files, request.description)
    return checkpoint.to_dict()


@router.post("/{ref}/restore")
async def restore_checkpoint(ref: str, engine: WorkbenchEngine = Depends(get_engine)) -> Dict[str, Any]:
    """Restore by id or by name (most recent checkpoint with that name)."""
    try:
        result = await engine.restore_checkpoint(ref)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Checkpoint not found: {ref}") from exc
    return result.to_dict()
