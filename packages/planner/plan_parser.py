"""
Parsing of AI planning output.

The AI collaborator replies with prose around a JSON object. Only the shape
is validated here; whether the plan is any good is for verification to find
out.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

from pydantic import ValidationError

from generation import extract_json_block
from protocol import TaskPlan


class PlanParseError(ValueError):
    """AI output did not contain a usable plan."""


@dataclass
class RefinementProposal:
    """A refinement plan, or an explicit "cannot fix" signal with its reason."""

    plan: Optional[TaskPlan] = None
    reasoning: str = ""
    cannot_fix: bool = False
    reason: str = ""


def _load_object(text: str) -> Dict[str, Any]:
    candidate = extract_json_block((text or "").strip())
    if candidate is None:
        raise PlanParseError("No JSON object found in response")
    try:
        payload = json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise PlanParseError(f"Malformed JSON: {exc.msg}") from exc
    if not isinstance(payload, dict):
        raise PlanParseError("Plan must be a JSON object")
    return payload


# Fields the engine owns; a model reply never sets them.
PLAN_STATE_FIELDS = ("status", "iteration")
TASK_STATE_FIELDS = ("status", "error")


def plan_from_dict(payload: Dict[str, Any]) -> TaskPlan:
    raw = payload.get("plan", payload)
    if not isinstance(raw, dict):
        raise PlanParseError("Plan must be a JSON object")
    data = {k: v for k, v in raw.items() if k not in PLAN_STATE_FIELDS}
    tasks = data.get("tasks")
    if isinstance(tasks, list):
        data["tasks"] = [
            {k: v for k, v in task.items() if k not in TASK_STATE_FIELDS} if isinstance(task, dict) else task
            for task in tasks
        ]
    try:
        return TaskPlan.model_validate(data)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise PlanParseError(f"Invalid plan at {location or 'root'}: {first['msg']}") from exc


def parse_plan(text: str) -> TaskPlan:
    """
    Extract and validate a TaskPlan from AI output.

    Raises:
        PlanParseError: If no valid plan object is present
    """
    return plan_from_dict(_load_object(text))


def parse_refinement(text: str) -> RefinementProposal:
    """
    Accepts either a plan object or ``{"cannot_fix": true, "reason": "..."}``.

    Raises:
        PlanParseError: If the reply is neither
    """
    payload = _load_object(text)
    reasoning = str(payload.get("reasoning", ""))
    if payload.get("cannot_fix"):
        reason = str(payload.get("reason") or "The errors cannot be fixed automatically")
        return RefinementProposal(cannot_fix=True, reason=reason, reasoning=reasoning)
    return RefinementProposal(plan=plan_from_dict(payload), reasoning=reasoning)
