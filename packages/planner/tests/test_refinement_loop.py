"""
Tests for RefinementLoop

Validates:
- A failed plan is repaired with a plan scoped to the failing files
- The loop stops after max_iterations with a fatal outcome
- "cannot fix" reasons are surfaced verbatim
- A regressing attempt is rolled back when a tracker is attached
"""

import asyncio
import json

from executor import ActionQueue, MemoryFileSystem, RollbackController
from generation import StubGenerator
from planner import (
    EXECUTING,
    AIPlanner,
    ExecutionGuard,
    PlanExecutor,
    RefinementLoop,
    RefinementStatus,
)
from protocol import PlanStatus, PlanTask, TaskPlan, TaskType, VerificationResult
from verification import ErrorTracker

FIX_PLAN = json.dumps({
    "summary": "Fix type errors in App",
    "tasks": [{"id": "f1", "type": "modify", "target": "src/App.tsx", "content": "export const App = 1;\n"}],
})


def _failed_plan():
    plan = TaskPlan(
        summary="Add App",
        tasks=[PlanTask(id="t1", type=TaskType.FILE, target="src/App.tsx", content="export const App: number = '1';\n")],
    )
    plan.status = PlanStatus.APPROVED
    return plan


def _loop(fs, verifier, replies, **kwargs):
    generator = StubGenerator(replies)
    executor = PlanExecutor(ActionQueue(fs), verifier=verifier)
    loop = RefinementLoop(executor, verifier, AIPlanner(generator), **kwargs)
    return loop, executor, generator


# ==================== Refinement Tests ====================

def test_type_errors_fixed_in_one_iteration(sequence_verifier, failing_result):
    fs = MemoryFileSystem()
    verifier = sequence_verifier(failing_result(3), VerificationResult.passed())
    loop, executor, generator = _loop(fs, verifier, [FIX_PLAN])
    plan = _failed_plan()

    async def run():
        result = await executor.execute(plan)
        return result, await loop.run(plan, result.verification)

    result, outcome = asyncio.run(run())

    assert not result.success
    assert outcome.status == RefinementStatus.SUCCEEDED
    assert outcome.iterations == 1
    assert outcome.message == "Fixed after 1 attempt(s)"
    assert plan.iteration == 1
    assert plan.status == PlanStatus.COMPLETED
    assert fs.files["src/App.tsx"] == "export const App = 1;\n"
    assert generator.contexts[0]["failing_files"] == ["src/App.tsx"]
    assert len(generator.contexts[0]["errors"]) == 3


def test_always_failing_verifier_stops_after_three_attempts(sequence_verifier, failing_result):
    fs = MemoryFileSystem({"src/App.tsx": "broken"})
    loop, _, generator = _loop(fs, sequence_verifier(failing_result(3)), [FIX_PLAN] * 5)
    plan = _failed_plan()

    outcome = asyncio.run(loop.run(plan, failing_result(3)))

    assert generator.call_count == 3
    assert outcome.status == RefinementStatus.EXHAUSTED
    assert outcome.fatal
    assert outcome.message == "max attempts reached - manual intervention required"
    assert [a.iteration for a in outcome.attempts] == [1, 2, 3]
    assert plan.status == PlanStatus.FAILED
    assert loop.remaining_attempts() == 0


def test_cannot_fix_reason_is_verbatim(sequence_verifier, failing_result):
    reason = "The API client needs a STRIPE_SECRET_KEY that only you can provide"
    reply = json.dumps({"cannot_fix": True, "reason": reason})
    loop, _, _ = _loop(MemoryFileSystem(), sequence_verifier(failing_result(1)), [reply])
    plan = _failed_plan()

    outcome = asyncio.run(loop.run(plan, failing_result(1)))

    assert outcome.status == RefinementStatus.CANNOT_FIX
    assert outcome.message == reason
    assert outcome.iterations == 0
    assert plan.status == PlanStatus.FAILED


def test_unusable_reply_uses_an_attempt(sequence_verifier, failing_result):
    loop, _, generator = _loop(
        MemoryFileSystem(), sequence_verifier(failing_result(1)), ["sorry, no idea"] * 3,
        max_iterations=2,
    )

    outcome = asyncio.run(loop.run(_failed_plan(), failing_result(1)))

    assert generator.call_count == 2
    assert outcome.status == RefinementStatus.EXHAUSTED
    assert outcome.attempts[0].error == "No JSON object found in response"


def test_non_object_plan_reply_uses_an_attempt(sequence_verifier, failing_result):
    loop, _, generator = _loop(
        MemoryFileSystem(), sequence_verifier(failing_result(1)), ['{"plan": null}'] * 2,
        max_iterations=2,
    )

    outcome = asyncio.run(loop.run(_failed_plan(), failing_result(1)))

    assert generator.call_count == 2
    assert outcome.status == RefinementStatus.EXHAUSTED
    assert outcome.attempts[0].error == "Plan must be a JSON object"


def test_refinement_is_noop_while_executing(sequence_verifier, failing_result):
    guard = ExecutionGuard()
    loop, _, generator = _loop(
        MemoryFileSystem(), sequence_verifier(failing_result(1)), [FIX_PLAN], guard=guard
    )

    with guard.hold(EXECUTING):
        outcome = asyncio.run(loop.run(_failed_plan(), failing_result(1)))

    assert outcome.status == RefinementStatus.SKIPPED
    assert outcome.reason == "plan execution in progress"
    assert generator.call_count == 0


def test_iteration_bookkeeping(sequence_verifier, failing_result):
    loop, _, _ = _loop(MemoryFileSystem(), sequence_verifier(failing_result(1)), [])

    assert loop.can_refine(failing_result(1))
    assert not loop.can_refine(VerificationResult.passed())
    assert loop.iteration_status() == "Attempt 1 of 3"

    loop.iteration = 3
    assert not loop.can_refine(failing_result(1))
    assert loop.iteration_status() == "Attempt 3 of 3"

    loop.reset()
    assert loop.remaining_attempts() == 3


# ==================== Guarded Attempt Tests ====================

def test_regressing_attempt_is_rolled_back(marker_verifier):
    fs = MemoryFileSystem({"src/a.ts": "ERR\nERR\n"})
    verifier = marker_verifier(fs)
    queue = ActionQueue(fs)
    tracker = ErrorTracker(verifier)
    regression = json.dumps({
        "summary": "Rewrite a.ts",
        "tasks": [{"id": "f1", "type": "file", "target": "src/a.ts", "content": "ERR\n" * 5}],
    })
    loop = RefinementLoop(
        PlanExecutor(queue, verifier=verifier),
        verifier,
        AIPlanner(StubGenerator([regression])),
        max_iterations=1,
        tracker=tracker,
        rollback_controller=RollbackController(tracker, queue),
    )

    async def run():
        return await loop.run(_failed_plan(), await verifier.verify())

    outcome = asyncio.run(run())

    attempt = outcome.attempts[0]
    assert attempt.rollback.rolled_back
    assert attempt.rollback.status == "rolled back - fix introduced regressions (2 -> 5)"
    assert attempt.error_count == 2
    assert fs.files["src/a.ts"] == "ERR\nERR\n"
    assert outcome.status == RefinementStatus.EXHAUSTED


def test_improving_attempt_is_kept(marker_verifier):
    fs = MemoryFileSystem({"src/a.ts": "ERR\nERR\n"})
    verifier = marker_verifier(fs)
    queue = ActionQueue(fs)
    tracker = ErrorTracker(verifier)
    fix = json.dumps({
        "summary": "Fix a.ts",
        "tasks": [{"id": "f1", "type": "file", "target": "src/a.ts", "content": "ok\n"}],
    })
    loop = RefinementLoop(
        PlanExecutor(queue, verifier=verifier),
        verifier,
        AIPlanner(StubGenerator([fix])),
        tracker=tracker,
        rollback_controller=RollbackController(tracker, queue),
    )

    async def run():
        return await loop.run(_failed_plan(), await verifier.verify())

    outcome = asyncio.run(run())

    assert outcome.success
    assert not outcome.attempts[0].rollback.rolled_back
    assert outcome.attempts[0].rollback.status == "fix reduced errors (2 -> 0)"
    assert fs.files["src/a.ts"] == "ok\n"
