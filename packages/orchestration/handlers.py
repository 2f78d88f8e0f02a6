"""
Phase handlers backed by the AI generation collaborator.

Research, requirements and architecture are text artifacts kept in an
in-memory DocumentStore; each implementation phase becomes a TaskPlan that is
applied through the PlanExecutor. Refinement asks the planner for a fix plan
scoped to the failing files of the current phase.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from executor import OrchestrationError
from generation import extract_json_block
from planner import EXECUTING, REFINING, AIPlanner, PlanExecutor
from protocol import PlanStatus, TaskPlan, VerificationResult
from verification import Verifier

from .costs import CostTracker
from .machine import OrchestrationContext
from .runner import ArchitectureResult

logger = logging.getLogger(__name__)

RESEARCH_PROMPT = (
    "Research what is needed to build the request below: comparable products, "
    "libraries worth using and pitfalls. Reply in concise markdown."
)
PRD_PROMPT = (
    "Write product requirements (goals, features, user stories, acceptance criteria) "
    "for the request, using the research if provided. Reply in concise markdown."
)
ARCHITECTURE_PROMPT = (
    "Design the technical architecture for the requirements and split the work into "
    "ordered implementation phases. Reply with one JSON object: "
    '{"summary": str, "phases": [{"id": str, "name": str, "description": str}]}'
)


@dataclass
class ArtifactDocument:
    id: str
    kind: str
    title: str
    content: str
    data: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class DocumentStore:
    def __init__(self) -> None:
        self._documents: Dict[str, ArtifactDocument] = {}

    def save(self, kind: str, title: str, content: str, data: Optional[Dict[str, Any]] = None) -> ArtifactDocument:
        document = ArtifactDocument(
            id=f"{kind}_{uuid.uuid4().hex[:10]}", kind=kind, title=title, content=content,
            data=data or {},
        )
        self._documents[document.id] = document
        return document

    def get(self, document_id: Optional[str]) -> Optional[ArtifactDocument]:
        if document_id is None:
            return None
        return self._documents.get(document_id)

    def list(self, kind: Optional[str] = None) -> List[ArtifactDocument]:
        return [d for d in self._documents.values() if kind is None or d.kind == kind]


def parse_phases(text: str) -> List[Dict[str, str]]:
    """Extract the phase list from an architecture reply."""
    block = extract_json_block(text or "")
    if block is None:
        raise OrchestrationError("Architecture reply contained no JSON object")
    try:
        payload = json.loads(block)
    except json.JSONDecodeError as exc:
        raise OrchestrationError(f"Malformed architecture JSON: {exc.msg}") from exc
    phases = payload.get("phases") if isinstance(payload, dict) else None
    if not isinstance(phases, list) or not phases:
        raise OrchestrationError("Architecture reply has no phases")

    parsed: List[Dict[str, str]] = []
    for index, phase in enumerate(phases, start=1):
        if not isinstance(phase, dict):
            raise OrchestrationError(f"Phase {index} is not an object")
        parsed.append({
            "id": str(phase.get("id") or f"phase_{index}"),
            "name": str(phase.get("name") or f"Phase {index}"),
            "description": str(phase.get("description") or ""),
        })
    return parsed


class GenerativePhaseHandlers:
    def __init__(
        self,
        planner: AIPlanner,
        executor: PlanExecutor,
        verifier: Optional[Verifier] = None,
        costs: Optional[CostTracker] = None,
        model_tier: str = "flash",
        documents: Optional[DocumentStore] = None,
    ):
        self.planner = planner
        self.executor = executor
        self.verifier = verifier
        self.costs = costs
        self.model_tier = model_tier
        self.documents = documents or DocumentStore()
        self.phases: Dict[str, Dict[str, str]] = {}
        self.plans: Dict[str, TaskPlan] = {}

    async def research(self, context: OrchestrationContext) -> str:
        text = await self._generate(RESEARCH_PROMPT, {"request": context.original_prompt}, "research")
        return self.documents.save("research", f"Research: {context.original_prompt[:50]}", text).id

    async def define_product(self, context: OrchestrationContext) -> str:
        research = self.documents.get(context.research_session_id)
        text = await self._generate(
            PRD_PROMPT,
            {"request": context.original_prompt, "research": research.content if research else None},
            "product",
        )
        return self.documents.save("prd", "Product requirements", text).id

    async def generate_architecture(self, context: OrchestrationContext) -> ArchitectureResult:
        prd = self.documents.get(context.prd_id)
        text = await self._generate(
            ARCHITECTURE_PROMPT,
            {"request": context.original_prompt, "requirements": prd.content if prd else None},
            "architecture",
        )
        phases = parse_phases(text)
        for phase in phases:
            self.phases[phase["id"]] = phase
        document = self.documents.save("architecture", "Architecture", text, {"phases": phases})
        return ArchitectureResult(document.id, [p["id"] for p in phases])

    async def execute_phase(self, phase_id: str, context: OrchestrationContext) -> bool:
        phase = self.phases.get(phase_id, {"name": phase_id, "description": ""})
        with self.executor.guard.hold(EXECUTING) as acquired:
            if not acquired:
                raise OrchestrationError("Refinement in progress", "executing-phase")
            request = phase["name"]
            if phase["description"]:
                request = f"{request}: {phase['description']}"
            plan = await self.planner.generate_plan(
                request,
                {"request": context.original_prompt, "completed_phases": context.completed_phases},
            )
            self._record_usage("implementation")
            self.plans[phase_id] = plan
            plan.status = PlanStatus.EXECUTING
            result = await self.executor.run_tasks(plan)
            plan.status = PlanStatus.COMPLETED if result.success else PlanStatus.FAILED
        logger.info(f"Phase {phase_id} applied: {plan.status_counts()}")
        return result.success

    async def verify(self, context: OrchestrationContext) -> VerificationResult:
        if self.verifier is None:
            return VerificationResult.passed()
        return await self.verifier.verify()

    async def refine(self, verification: VerificationResult, context: OrchestrationContext) -> None:
        plan = self.plans.get(context.current_phase_id or "")
        if plan is None:
            raise OrchestrationError("No plan recorded for the current phase", "refining")
        with self.executor.guard.hold(REFINING) as acquired:
            if not acquired:
                raise OrchestrationError("Plan execution in progress", "refining")
            proposal = await self.planner.refine(plan, verification, context.current_iteration + 1)
            self._record_usage("refinement")
            if proposal.cannot_fix:
                raise OrchestrationError(proposal.reason, "refining")
            await self.executor.run_tasks(proposal.plan)
        plan.iteration = context.current_iteration + 1

    async def _generate(self, prompt: str, context: Dict[str, Any], phase: str) -> str:
        text = await self.planner.generator.generate_text(prompt, context)
        self._record_usage(phase)
        return text

    def _record_usage(self, phase: str) -> None:
        usage = self.planner.generator.last_usage
        if self.costs is None or usage is None:
            return
        self.costs.record(usage.input_tokens, usage.output_tokens, self.model_tier, phase=phase)
