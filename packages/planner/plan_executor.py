"""
PlanExecutor - runs an approved TaskPlan through the Action Queue.

Shell tasks go first (dependency installs), then file tasks in dependency
order. Tasks are enqueued one at a time so that content for a later task can
be generated after earlier files exist. A task whose dependency failed is
skipped; with ``stop_on_error`` every remaining task is skipped instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional

from executor import ActionQueue, EngineObserver
from protocol import PlanStatus, PlanTask, TaskPlan, TaskStatus, TaskType, VerificationResult
from verification import Verifier

from .guard import EXECUTING, ExecutionGuard

logger = logging.getLogger(__name__)

ContentGenerator = Callable[[PlanTask, TaskPlan], Awaitable[str]]


@dataclass
class TaskRunResult:
    task_id: str
    status: TaskStatus
    action_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class PlanExecutionResult:
    plan: TaskPlan
    success: bool
    verification: Optional[VerificationResult] = None
    task_results: List[TaskRunResult] = field(default_factory=list)
    action_ids: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def files_touched(self) -> List[str]:
        targets = {t.id: t.target for t in self.plan.tasks if t.type != TaskType.SHELL}
        return [targets[r.task_id] for r in self.task_results if r.task_id in targets and r.action_id]


class PlanExecutor:
    def __init__(
        self,
        queue: ActionQueue,
        verifier: Optional[Verifier] = None,
        content_generator: Optional[ContentGenerator] = None,
        observer: Optional[EngineObserver] = None,
        stop_on_error: bool = False,
        guard: Optional[ExecutionGuard] = None,
    ):
        self.queue = queue
        self.verifier = verifier
        self.content_generator = content_generator
        self.observer = observer or queue.observer
        self.stop_on_error = stop_on_error
        self.guard = guard or ExecutionGuard()

    async def execute(self, plan: TaskPlan) -> Optional[PlanExecutionResult]:
        """
        Execute an approved plan and verify the result.

        Returns:
            The execution result, or None if refinement is in progress

        Raises:
            ValueError: If the plan is not approved
        """
        if plan.status != PlanStatus.APPROVED:
            raise ValueError(f"Plan {plan.id} is {plan.status.value}, expected approved")
        with self.guard.hold(EXECUTING) as acquired:
            if not acquired:
                return None
            plan.status = PlanStatus.EXECUTING
            self.observer.on_progress(f"Executing plan: {plan.summary}")
            result = await self.run_tasks(plan)
            if result.error is None:
                result.verification = await self._verify(result)
                result.success = result.success and (
                    result.verification is None or result.verification.success
                )
            plan.status = PlanStatus.COMPLETED if result.success else PlanStatus.FAILED
            logger.info(f"Plan {plan.id} finished: {plan.status.value}")
            return result

    async def run_tasks(self, plan: TaskPlan) -> PlanExecutionResult:
        """Apply every pending task of the plan. No verification, no guard."""
        result = PlanExecutionResult(plan=plan, success=True)
        try:
            ordered = plan.ordered_tasks()
        except ValueError as exc:
            result.success = False
            result.error = str(exc)
            return result

        failed: Dict[str, bool] = {}
        halted = False
        for task in ordered:
            if task.status != TaskStatus.PENDING:
                continue
            blocked = [dep for dep in task.depends_on if failed.get(dep)]
            if halted or blocked:
                reason = "stopped after earlier failure" if halted else f"dependency failed: {blocked[0]}"
                task.status = TaskStatus.SKIPPED
                task.error = reason
                failed[task.id] = True
                result.task_results.append(TaskRunResult(task.id, TaskStatus.SKIPPED, error=reason))
                continue

            run = await self._run_task(task, plan)
            result.task_results.append(run)
            if run.action_id:
                result.action_ids.append(run.action_id)
            if run.status == TaskStatus.FAILED:
                failed[task.id] = True
                result.success = False
                halted = self.stop_on_error
        return result

    async def _run_task(self, task: PlanTask, plan: TaskPlan) -> TaskRunResult:
        task.status = TaskStatus.IN_PROGRESS
        self.observer.on_progress(f"Task {task.id}: {task.description or task.target}")
        try:
            content = None
            if task.needs_content:
                if self.content_generator is None:
                    raise ValueError(f"Task {task.id} has no content and no content generator")
                content = await self.content_generator(task, plan)
            action = task.to_action(content)
        except Exception as exc:
            task.status = TaskStatus.FAILED
            task.error = str(exc)
            logger.error(f"Task {task.id} could not be prepared: {exc}")
            return TaskRunResult(task.id, TaskStatus.FAILED, error=task.error)

        entries = await self.queue.enqueue_and_wait([action])
        entry = entries[0]
        if entry.failed:
            task.status = TaskStatus.FAILED
            task.error = entry.result.error
        else:
            task.status = TaskStatus.COMPLETED
            task.error = None
        return TaskRunResult(task.id, task.status, action_id=entry.id, error=task.error)

    async def _verify(self, result: PlanExecutionResult) -> Optional[VerificationResult]:
        if self.verifier is None:
            return None
        self.observer.on_progress("Verifying changes")
        return await self.verifier.verify()
