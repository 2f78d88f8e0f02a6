"""
AIPlanner - adapts a generation collaborator to the planner's needs:
initial plans, per-task file content, and scoped refinement plans.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from generation import BaseGenerator
from protocol import PlanTask, TaskPlan, VerificationResult

from .plan_parser import RefinementProposal, parse_plan, parse_refinement

logger = logging.getLogger(__name__)

PLAN_INSTRUCTIONS = """Break the request into a task plan. Reply with one JSON object:
{"summary": str, "description": str, "tasks": [{"id": str, "type": "file|modify|delete|shell",
"description": str, "target": path-or-command, "depends_on": [task ids], "complexity": 1-5}],
"files_to_create": [paths], "files_to_modify": [paths], "dependencies": [packages]}"""

REFINE_INSTRUCTIONS = """The plan below was executed and verification failed.
Fix ONLY the errors listed, touching only the failing files unless a new file or package
is required. Reply with a task plan JSON object (same shape as before, include "content"
for file tasks), or {"cannot_fix": true, "reason": str} if the errors cannot be fixed."""

MAX_ERRORS_IN_PROMPT = 30


class AIPlanner:
    def __init__(self, generator: BaseGenerator):
        self.generator = generator

    async def generate_plan(self, prompt: str, context: Optional[Dict[str, Any]] = None) -> TaskPlan:
        text = await self.generator.generate_text(f"{PLAN_INSTRUCTIONS}\n\nRequest: {prompt}", context)
        plan = parse_plan(text)
        logger.info(f"Generated plan {plan.id} with {len(plan.tasks)} task(s)")
        return plan

    async def generate_content(self, task: PlanTask, plan: TaskPlan) -> str:
        prompt = (
            f"Write the complete content of `{task.target}` for this task.\n"
            f"Task: {task.description}\nPlan: {plan.summary}\n"
            "Reply with the file content only, in a single fenced code block."
        )
        text = await self.generator.generate_text(prompt)
        return _strip_fence(text)

    async def refine(
        self, plan: TaskPlan, verification: VerificationResult, iteration: int
    ) -> RefinementProposal:
        failing_files = verification.files_with_errors()
        errors: List[str] = [e.format() for e in verification.errors[:MAX_ERRORS_IN_PROMPT]]
        context = {
            "plan_summary": plan.summary,
            "iteration": iteration,
            "failing_files": failing_files,
            "errors": errors,
        }
        text = await self.generator.generate_text(REFINE_INSTRUCTIONS, context)
        return parse_refinement(text)


def _strip_fence(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("```"):
        lines = stripped.splitlines()
        if len(lines) >= 2 and lines[-1].strip().startswith("```"):
            return "\n".join(lines[1:-1]) + "\n"
    return text
