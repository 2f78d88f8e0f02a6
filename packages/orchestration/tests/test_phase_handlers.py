"""
Tests for GenerativePhaseHandlers

Validates:
- Research, requirements and architecture become stored documents
- Each phase is planned by the AI collaborator and applied through the queue
- A "cannot fix" refinement fails the orchestration with its reason
"""

import asyncio
import json

import pytest

from executor import ActionQueue, MemoryFileSystem, OrchestrationError
from generation import StubGenerator
from orchestration import (
    ApprovalGates,
    CostTracker,
    GenerativePhaseHandlers,
    OrchestrationContext,
    OrchestrationMachine,
    OrchestrationRunner,
    OrchestrationState,
    parse_phases,
)
from planner import AIPlanner, PlanExecutor

ARCHITECTURE = json.dumps({
    "summary": "Single page app",
    "phases": [{"id": "phase_1", "name": "Scaffold", "description": "App shell"}],
})
PHASE_PLAN = json.dumps({
    "summary": "Scaffold",
    "tasks": [{"id": "t1", "type": "file", "target": "src/App.tsx", "content": "export const App = () => null;\n"}],
})
REPLIES = ["# Research\nUse React.", "# Requirements\nA todo list.", ARCHITECTURE, PHASE_PLAN]


class StuckVerifier:
    def __init__(self, result):
        self.result = result

    async def verify(self, files=None):
        return self.result


def _drive(fs, replies, verifier=None):
    generator = StubGenerator(replies)
    costs = CostTracker()
    handlers = GenerativePhaseHandlers(
        AIPlanner(generator), PlanExecutor(ActionQueue(fs)), verifier=verifier, costs=costs
    )
    machine = OrchestrationMachine(
        context=OrchestrationContext(), gates=ApprovalGates(architecture=False)
    )
    runner = OrchestrationRunner(machine, handlers, costs=costs)

    async def scenario():
        runner.start("build a todo app")
        return await runner.run()

    return asyncio.run(scenario()), handlers, generator, costs, machine


def test_pipeline_produces_documents_and_files():
    fs = MemoryFileSystem()

    state, handlers, generator, costs, machine = _drive(fs, REPLIES)

    assert state == OrchestrationState.COMPLETE
    assert fs.files["src/App.tsx"] == "export const App = () => null;\n"
    assert [d.kind for d in handlers.documents.list()] == ["research", "prd", "architecture"]
    assert handlers.documents.get(machine.context.prd_id).content == "# Requirements\nA todo list."
    assert handlers.phases["phase_1"]["name"] == "Scaffold"
    assert generator.call_count == 4
    assert set(costs.statistics().cost_by_phase) == {"research", "product", "architecture", "implementation"}


def test_cannot_fix_fails_with_reason(failing_verification):
    reason = "The design needs a paid maps API key"
    replies = REPLIES + [json.dumps({"cannot_fix": True, "reason": reason})]

    state, _, _, _, machine = _drive(MemoryFileSystem(), replies, StuckVerifier(failing_verification(2)))

    assert state == OrchestrationState.FAILED
    assert machine.context.error == reason


def test_parse_phases_fills_defaults():
    phases = parse_phases('{"phases": [{"name": "Auth"}, {"id": "ui"}]}')

    assert phases[0] == {"id": "phase_1", "name": "Auth", "description": ""}
    assert phases[1]["name"] == "Phase 2"


@pytest.mark.parametrize("text", ["no json", '{"summary": "x"}', '{"phases": []}', '{"phases": ["a"]}'])
def test_parse_phases_rejects(text):
    with pytest.raises(OrchestrationError):
        parse_phases(text)
