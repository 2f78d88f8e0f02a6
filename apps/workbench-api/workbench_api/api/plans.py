"""
Plan and fix endpoints:
- POST /plans                  - Ask the AI collaborator for a task plan (draft)
- GET  /plans/{id}             - Plan with task statuses
- POST /plans/{id}/execute     - Approve, execute and refine on verification failure
- POST /verification/pre       - Tiered pre-verification
- POST /verification/fix       - One guarded fix attempt
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from executor import WorkbenchError
from generation import GenerationError
from orchestration import WorkbenchEngine
from planner import PlanParseError

from workbench_api.deps import get_engine, http_error, upstream_error

router = APIRouter(tags=["plans"])


class PlanRequest(BaseModel):
    prompt: str = Field(min_length=1)


class FixRequest(BaseModel):
    prompt: Optional[str] = None


@router.post("/plans")
async def propose_plan(request: PlanRequest, engine: WorkbenchEngine = Depends(get_engine)) -> Dict[str, Any]:
    try:
        plan = await engine.propose_plan(request.prompt)
    except PlanParseError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except GenerationError as exc:
        raise upstream_error(exc) from exc
    except WorkbenchError as exc:
        raise http_error(exc) from exc
    return plan.model_dump(mode="json")


@router.get("/plans/{plan_id}")
async def get_plan(plan_id: str, engine: WorkbenchEngine = Depends(get_engine)) -> Dict[str, Any]:
    plan = engine.plans.get(plan_id)
    if plan is None:
        raise HTTPException(status_code=404, detail=f"Plan not found: {plan_id}")
    return plan.model_dump(mode="json")


@router.post("/plans/{plan_id}/execute")
async def execute_plan(plan_id: str, engine: WorkbenchEngine = Depends(get_engine)) -> Dict[str, Any]:
    try:
        report = await engine.execute_plan(plan_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Plan not found: {plan_id}") from exc
    except ValueError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except GenerationError as exc:
        raise upstream_error(exc) from exc
    return {
        "status": report.status,
        "plan": report.plan.model_dump(mode="json"),
        "iterations": report.refinement.iterations if report.refinement else 0,
    }


@router.post("/verification/pre")
async def pre_verify(engine: WorkbenchEngine = Depends(get_engine)) -> Dict[str, Any]:
    try:
        result = await engine.pre_verify()
    except WorkbenchError as exc:
        raise http_error(exc) from exc
    return result.to_dict()


@router.post("/verification/fix")
async def fix_errors(request: FixRequest, engine: WorkbenchEngine = Depends(get_engine)) -> Dict[str, Any]:
    try:
        report = await engine.fix_errors(request.prompt) if request.prompt else await engine.fix_errors()
    except WorkbenchError as exc:
        raise http_error(exc) from exc
    except GenerationError as exc:
        raise upstream_error(exc) from exc
    return report.to_dict()
