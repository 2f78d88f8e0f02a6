"""
Shared doubles for orchestration tests.

- FakeHandlers: scripted phase handlers that record what they were asked to do
- StateObserver: records state changes, approvals and errors
"""

import asyncio
from typing import List, Optional

import pytest

from executor import EngineObserver
from orchestration import ArchitectureResult
from protocol import ErrorCategory, VerificationError, VerificationResult


def failing(count=1):
    return VerificationResult.from_errors(
        [
            VerificationError(category=ErrorCategory.TYPE, message=f"error {n}", file="src/App.tsx", line=n)
            for n in range(1, count + 1)
        ]
    )


class FakeHandlers:
    def __init__(
        self,
        phases=("phase_1",),
        verifications: Optional[List[VerificationResult]] = None,
        fail_on: Optional[str] = None,
        block_research: bool = False,
    ):
        self.phases = list(phases)
        self.verifications = list(verifications or [])
        self.fail_on = fail_on
        self.calls: List[str] = []
        self.executed: List[str] = []
        self.refinements = 0
        # Research blocks until released when block_research is set.
        self.research_entered = asyncio.Event()
        self.release_research = asyncio.Event()
        if not block_research:
            self.release_research.set()

    def _call(self, name):
        self.calls.append(name)
        if self.fail_on == name:
            raise RuntimeError(f"{name} exploded")

    async def research(self, context):
        self._call("research")
        self.research_entered.set()
        await self.release_research.wait()
        return "research_1"

    async def define_product(self, context):
        self._call("define_product")
        return "prd_1"

    async def generate_architecture(self, context):
        self._call("generate_architecture")
        return ArchitectureResult("arch_1", list(self.phases))

    async def execute_phase(self, phase_id, context):
        self._call("execute_phase")
        self.executed.append(phase_id)
        return True

    async def verify(self, context):
        self._call("verify")
        if len(self.verifications) > 1:
            return self.verifications.pop(0)
        if self.verifications:
            return self.verifications[0]
        return VerificationResult.passed()

    async def refine(self, verification, context):
        self._call("refine")
        self.refinements += 1


class StateObserver(EngineObserver):
    def __init__(self):
        self.transitions: List[tuple] = []
        self.approvals: List[str] = []
        self.errors: List[str] = []
        self.completed = 0

    def on_state_change(self, from_state, to_state, context):
        self.transitions.append((from_state, to_state))

    def on_approval_needed(self, approval_type):
        self.approvals.append(approval_type)

    def on_error(self, message):
        self.errors.append(message)

    def on_complete(self, context):
        self.completed += 1


@pytest.fixture
def fake_handlers():
    """Factory: ``fake_handlers(phases=..., verifications=..., fail_on=...)``."""
    return FakeHandlers


@pytest.fixture
def state_observer():
    return StateObserver()


@pytest.fixture
def failing_verification():
    """Factory: ``failing_verification(count)``."""
    return failing
