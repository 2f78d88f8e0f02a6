"""
Refinement Loop - bounded plan -> execute -> verify -> repair cycle.

Given a failed verification and the plan that produced it, the loop asks the
AI collaborator for a fix plan scoped to the failing files, applies it
through the Action Queue and re-verifies. It ends on one of:

    succeeded   verification passes
    exhausted   iteration reached max_iterations (fatal, manual fix needed)
    cannot_fix  the generator gave up; its reason is surfaced verbatim
    skipped     plan execution holds the guard, nothing was done

With a tracker and rollback controller attached, each attempt is guarded:
if the attempt raised the error count it is rolled back before the next one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Protocol, Tuple

from executor import AutoRollbackReport, RollbackController
from protocol import PlanStatus, TaskPlan, VerificationResult
from verification import ErrorTracker, Verifier

from .guard import REFINING, ExecutionGuard
from .plan_executor import PlanExecutor
from .plan_parser import PlanParseError, RefinementProposal

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 3


class RefinementGenerator(Protocol):
    async def refine(
        self, plan: TaskPlan, verification: VerificationResult, iteration: int
    ) -> RefinementProposal:
        ...


class RefinementStatus(str, Enum):
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"
    CANNOT_FIX = "cannot_fix"
    SKIPPED = "skipped"


@dataclass
class RefinementAttempt:
    iteration: int
    plan_id: Optional[str] = None
    action_ids: List[str] = field(default_factory=list)
    error_count: int = 0
    error: Optional[str] = None
    rollback: Optional[AutoRollbackReport] = None


@dataclass
class RefinementOutcome:
    status: RefinementStatus
    iterations: int
    verification: Optional[VerificationResult] = None
    reason: Optional[str] = None
    attempts: List[RefinementAttempt] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status == RefinementStatus.SUCCEEDED

    @property
    def fatal(self) -> bool:
        return self.status in (RefinementStatus.EXHAUSTED, RefinementStatus.CANNOT_FIX)

    @property
    def message(self) -> str:
        if self.status == RefinementStatus.SUCCEEDED:
            if self.iterations == 0:
                return "no errors found"
            return f"Fixed after {self.iterations} attempt(s)"
        if self.status == RefinementStatus.EXHAUSTED:
            return "max attempts reached - manual intervention required"
        return self.reason or self.status.value


class RefinementLoop:
    def __init__(
        self,
        executor: PlanExecutor,
        verifier: Verifier,
        generator: RefinementGenerator,
        guard: Optional[ExecutionGuard] = None,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        tracker: Optional[ErrorTracker] = None,
        rollback_controller: Optional[RollbackController] = None,
    ):
        self.executor = executor
        self.verifier = verifier
        self.generator = generator
        self.guard = guard or executor.guard
        self.max_iterations = max_iterations
        self.tracker = tracker
        self.rollback_controller = rollback_controller
        self.iteration = 0

    def can_refine(self, verification: VerificationResult) -> bool:
        return (
            not verification.success
            and self.iteration < self.max_iterations
            and not self.guard.busy
        )

    def iteration_status(self) -> str:
        return f"Attempt {min(self.iteration + 1, self.max_iterations)} of {self.max_iterations}"

    def remaining_attempts(self) -> int:
        return max(0, self.max_iterations - self.iteration)

    def reset(self) -> None:
        self.iteration = 0

    async def run(self, plan: TaskPlan, verification: VerificationResult) -> RefinementOutcome:
        with self.guard.hold(REFINING) as acquired:
            if not acquired:
                return RefinementOutcome(
                    status=RefinementStatus.SKIPPED,
                    iterations=self.iteration,
                    verification=verification,
                    reason="plan execution in progress",
                )
            outcome = await self._loop(plan, verification)

        plan.iteration = self.iteration
        if outcome.success:
            plan.status = PlanStatus.COMPLETED
        elif outcome.fatal:
            plan.status = PlanStatus.FAILED
        logger.info(f"Refinement of {plan.id} ended: {outcome.status.value} ({outcome.message})")
        return outcome

    async def _loop(self, plan: TaskPlan, verification: VerificationResult) -> RefinementOutcome:
        self.iteration = max(self.iteration, plan.iteration)
        current = verification
        attempts: List[RefinementAttempt] = []

        while not current.success:
            if self.iteration >= self.max_iterations:
                logger.warning(f"Refinement exhausted after {self.iteration} attempt(s)")
                return RefinementOutcome(
                    RefinementStatus.EXHAUSTED, self.iteration, current,
                    reason="max attempts reached", attempts=attempts,
                )

            self.executor.observer.on_progress(f"Refining: {self.iteration_status()}")
            try:
                proposal = await self.generator.refine(plan, current, self.iteration + 1)
            except PlanParseError as exc:
                self.iteration += 1
                logger.warning(f"Refinement attempt {self.iteration} produced no usable plan: {exc}")
                attempts.append(
                    RefinementAttempt(self.iteration, error_count=current.error_count, error=str(exc))
                )
                continue

            if proposal.cannot_fix:
                return RefinementOutcome(
                    RefinementStatus.CANNOT_FIX, self.iteration, current,
                    reason=proposal.reason, attempts=attempts,
                )

            attempt, current = await self.refine_once(proposal.plan, current)
            attempts.append(attempt)

        return RefinementOutcome(
            RefinementStatus.SUCCEEDED, self.iteration, current, attempts=attempts
        )

    async def refine_once(
        self, fix_plan: TaskPlan, current: VerificationResult
    ) -> Tuple[RefinementAttempt, VerificationResult]:
        """Apply one fix plan, bump the iteration and re-verify."""
        guarded = self.tracker is not None and self.rollback_controller is not None
        if guarded:
            await self.tracker.capture_baseline(result=current, force=True)

        fix_plan.status = PlanStatus.EXECUTING
        run = await self.executor.run_tasks(fix_plan)
        self.iteration += 1
        attempt = RefinementAttempt(
            iteration=self.iteration, plan_id=fix_plan.id, action_ids=list(run.action_ids),
            error=run.error,
        )

        if guarded:
            report = await self.rollback_controller.guard_fix_attempt(
                run.action_ids, run.files_touched
            )
            attempt.rollback = report
            self.executor.observer.on_progress(report.status)
            # After a rollback the project is back at the pre-attempt state.
            result = current if report.rolled_back or self.tracker.current is None else self.tracker.current
        else:
            result = await self.verifier.verify()

        fix_plan.status = PlanStatus.COMPLETED if result.success else PlanStatus.FAILED
        attempt.error_count = result.error_count
        logger.info(
            f"Refinement attempt {self.iteration}/{self.max_iterations}: "
            f"{result.error_count} error(s) remaining"
        )
        return attempt, result
