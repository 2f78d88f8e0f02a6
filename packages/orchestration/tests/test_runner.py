"""
Tests for OrchestrationRunner

Validates:
- The driver loop stops at approval, pause, complete and failed
- A completion that lands while paused is delivered on resume
- Handler exceptions move the machine to failed
"""

import asyncio

import pytest

from executor import OrchestrationError
from orchestration import (
    ApprovalGates,
    ApprovalManager,
    ApprovalStatus,
    OrchestrationContext,
    OrchestrationMachine,
    OrchestrationRunner,
    OrchestrationState,
)
from protocol import VerificationResult

S = OrchestrationState

NO_GATES = ApprovalGates(architecture=False)


def _runner(handlers, gates=NO_GATES, approvals=None, max_iterations=3, observer=None):
    machine = OrchestrationMachine(
        context=OrchestrationContext(max_iterations=max_iterations), gates=gates, observer=observer
    )
    return OrchestrationRunner(machine, handlers, approvals=approvals)


# ==================== Driver Loop Tests ====================

def test_runs_to_complete_without_gates(fake_handlers):
    async def scenario():
        handlers = fake_handlers(phases=["phase_1", "phase_2"])
        runner = _runner(handlers)
        runner.start("build a todo app")
        return handlers, runner, await runner.run()

    handlers, runner, state = asyncio.run(scenario())

    assert state == S.COMPLETE
    assert handlers.executed == ["phase_1", "phase_2"]
    assert runner.machine.context.completed_phases == ["phase_1", "phase_2"]
    assert handlers.calls[:3] == ["research", "define_product", "generate_architecture"]
    assert not runner.running


def test_stops_for_approval_then_continues(fake_handlers):
    async def scenario():
        handlers = fake_handlers()
        approvals = ApprovalManager()
        runner = _runner(handlers, gates=ApprovalGates(), approvals=approvals)
        runner.start("p")
        first = await runner.run()
        request = approvals.current()
        approved = runner.approve()
        second = await runner.run()
        return first, request, approved, second

    first, request, approved, second = asyncio.run(scenario())

    assert first == S.AWAITING_APPROVAL
    assert request.type.value == "architecture"
    assert approved
    assert request.status == ApprovalStatus.APPROVED
    assert second == S.COMPLETE


def test_auto_approved_gate_does_not_stop(fake_handlers):
    async def scenario():
        handlers = fake_handlers()
        approvals = ApprovalManager(auto_approve=["architecture"])
        runner = _runner(handlers, gates=ApprovalGates(), approvals=approvals)
        runner.start("p")
        return approvals, await runner.run()

    approvals, state = asyncio.run(scenario())

    assert state == S.COMPLETE
    assert approvals.requests("architecture")[0].status == ApprovalStatus.APPROVED


def test_reject_fails_and_resolves_request(fake_handlers):
    async def scenario():
        approvals = ApprovalManager()
        runner = _runner(fake_handlers(), gates=ApprovalGates(research=True), approvals=approvals)
        runner.start("p")
        await runner.run()
        request = approvals.current()
        runner.reject("not what I asked for")
        return runner, request

    runner, request = asyncio.run(scenario())

    assert runner.machine.state == S.FAILED
    assert request.status == ApprovalStatus.REJECTED
    assert request.rejection_reason == "not what I asked for"


def test_failed_verification_is_refined(fake_handlers, failing_verification):
    async def scenario():
        handlers = fake_handlers(verifications=[failing_verification(3), VerificationResult.passed()])
        runner = _runner(handlers)
        runner.start("p")
        return handlers, runner, await runner.run()

    handlers, runner, state = asyncio.run(scenario())

    assert state == S.COMPLETE
    assert handlers.refinements == 1
    assert runner.machine.context.current_iteration == 1


def test_always_failing_verification_ends_failed(fake_handlers, failing_verification, state_observer):
    async def scenario():
        handlers = fake_handlers(verifications=[failing_verification(2)])
        runner = _runner(handlers, max_iterations=2, observer=state_observer)
        runner.start("p")
        return handlers, runner, await runner.run()

    handlers, runner, state = asyncio.run(scenario())

    assert state == S.FAILED
    assert handlers.refinements == 2
    assert runner.machine.context.error == "max attempts reached"
    assert state_observer.errors == ["max attempts reached"]


def test_handler_exception_becomes_error(fake_handlers):
    async def scenario():
        runner = _runner(fake_handlers(fail_on="define_product"))
        runner.start("p")
        return runner, await runner.run()

    runner, state = asyncio.run(scenario())

    assert state == S.FAILED
    assert runner.machine.context.error == "define_product exploded"


# ==================== Pause / Abort Tests ====================

def test_completion_during_pause_is_delivered_on_resume(fake_handlers):
    async def scenario():
        handlers = fake_handlers(block_research=True)
        runner = _runner(handlers)
        runner.start("p")
        task = asyncio.create_task(runner.run())
        await handlers.research_entered.wait()

        assert runner.pause()
        handlers.release_research.set()
        paused = await task
        research_before_resume = runner.machine.context.research_session_id

        assert runner.resume()
        after_resume = runner.machine.state
        final = await runner.run()
        return paused, research_before_resume, after_resume, final, runner

    paused, research_before_resume, after_resume, final, runner = asyncio.run(scenario())

    assert paused == S.PAUSED
    assert research_before_resume is None
    assert after_resume == S.DEFINING_PRODUCT
    assert runner.machine.context.research_session_id == "research_1"
    assert final == S.COMPLETE


def test_completion_after_abort_is_dropped(fake_handlers):
    async def scenario():
        handlers = fake_handlers(block_research=True)
        runner = _runner(handlers)
        runner.start("p")
        task = asyncio.create_task(runner.run())
        await handlers.research_entered.wait()

        assert runner.abort()
        handlers.release_research.set()
        return runner, handlers, await task

    runner, handlers, state = asyncio.run(scenario())

    assert state == S.FAILED
    assert runner.machine.context.research_session_id is None
    assert handlers.calls == ["research"]


def test_abort_rejects_pending_approvals(fake_handlers):
    async def scenario():
        approvals = ApprovalManager()
        runner = _runner(fake_handlers(), gates=ApprovalGates(), approvals=approvals)
        runner.start("p")
        await runner.run()
        runner.abort()
        return approvals

    approvals = asyncio.run(scenario())

    assert not approvals.has_pending()
    assert approvals.requests()[0].rejection_reason == "Aborted"


# ==================== Start From Tests ====================

def test_start_from_existing_architecture(fake_handlers):
    async def scenario():
        handlers = fake_handlers()
        runner = _runner(handlers)
        assert runner.start_from(research_id="r", prd_id="d", architecture_id="a", phase_ids=["phase_9"])
        assert runner.machine.state == S.PLANNING_PHASE
        return handlers, await runner.run()

    handlers, state = asyncio.run(scenario())

    assert state == S.COMPLETE
    assert handlers.calls[0] == "execute_phase"
    assert handlers.executed == ["phase_9"]


def test_start_from_prd_generates_architecture(fake_handlers):
    runner = _runner(fake_handlers())

    assert runner.start_from(prd_id="prd_1")
    assert runner.machine.state == S.GENERATING_ARCHITECTURE


def test_start_from_without_phases_raises(fake_handlers):
    runner = _runner(fake_handlers())

    with pytest.raises(OrchestrationError):
        runner.start_from(architecture_id="a", phase_ids=[])
