"""
WorkbenchEngine - the one long-lived engine object per project.

It owns the Action Queue (and with it history and backups), the checkpoint
store, the verifiers, the planner and the current orchestration. UI-facing
code changes observers and config in place through ``set_observer`` and
``update_config``; the engine is never rebuilt, so in-flight history and
backups survive.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set

from executor import (
    ActionHandle,
    ActionQueue,
    AutoRollbackReport,
    CheckpointStore,
    EngineObserver,
    FileSystem,
    HistoryEntry,
    ObserverGroup,
    OrchestrationError,
    ProcessRunner,
    RestoreResult,
    RollbackController,
    WorkbenchError,
)
from executor.checkpoints import Checkpoint
from generation import BaseGenerator
from planner import AIPlanner, ExecutionGuard, PlanExecutionResult, PlanExecutor, RefinementLoop, RefinementOutcome
from protocol import FILE_ACTION_TYPES, Action, PlanStatus, TaskPlan
from verification import (
    CommandVerifier,
    ErrorTracker,
    PerFileVerifier,
    PreVerificationResult,
    PreVerifier,
    PreVerifierConfig,
    Verifier,
)

from .approvals import ApprovalManager, ApprovalType
from .config import EngineConfig
from .costs import CostTracker
from .handlers import GenerativePhaseHandlers
from .machine import OrchestrationContext, OrchestrationMachine, OrchestrationState
from .runner import OrchestrationRunner, PhaseHandlers

logger = logging.getLogger(__name__)

DEFAULT_FIX_PROMPT = "Fix the errors listed in the context. Change only what is needed."
NO_ERRORS_STATUS = "no errors found"


@dataclass
class FixReport:
    status: str
    pre_verification: Optional[PreVerificationResult] = None
    entries: List[HistoryEntry] = field(default_factory=list)
    rollback: Optional[AutoRollbackReport] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "pre_verification": self.pre_verification.to_dict() if self.pre_verification else None,
            "entries": [e.to_dict() for e in self.entries],
            "rollback": self.rollback.to_dict() if self.rollback else None,
        }


@dataclass
class PlanRunReport:
    plan: TaskPlan
    execution: Optional[PlanExecutionResult]
    refinement: Optional[RefinementOutcome] = None

    @property
    def status(self) -> str:
        if self.execution is None:
            return "skipped - refinement in progress"
        if self.refinement is not None:
            return self.refinement.message
        if self.execution.verification is not None and self.execution.verification.success:
            return NO_ERRORS_STATUS
        return self.plan.status.value


class WorkbenchEngine:
    def __init__(
        self,
        filesystem: FileSystem,
        process: Optional[ProcessRunner] = None,
        verifier: Optional[Verifier] = None,
        generator: Optional[BaseGenerator] = None,
        config: Optional[EngineConfig] = None,
        observer: Optional[EngineObserver] = None,
        handlers: Optional[PhaseHandlers] = None,
    ):
        """
        Wire every engine component once.

        Args:
            filesystem: Project filesystem collaborator
            process: Process collaborator for shell actions and command checks
            verifier: Verification collaborator (default: CommandVerifier over ``process``)
            generator: AI generation collaborator; planning features need it
            config: Engine settings (default: EngineConfig())
            observer: Initial observer; replace later with ``set_observer``
            handlers: Orchestration phase handlers (default: generator-backed)
        """
        self.config = config or EngineConfig()
        self.filesystem = filesystem
        self.process = process
        self.observers = ObserverGroup()
        self._observer: Optional[EngineObserver] = None
        if observer is not None:
            self.set_observer(observer)

        if verifier is None and process is not None:
            verifier = CommandVerifier(process, timeout_s=self.config.verification_timeout_s)
        self.verifier = verifier
        self.per_file_verifier = PerFileVerifier(verifier) if verifier is not None else None

        # Per-file verification is only switched on inside fix_errors.
        self.queue = ActionQueue(
            filesystem,
            process,
            observer=self.observers,
            file_checker=self.per_file_verifier,
            per_file_verification=False,
            history_limit=self.config.history_limit,
        )
        self.checkpoints = CheckpointStore(
            filesystem, max_checkpoints=self.config.max_checkpoints, observer=self.observers
        )
        self.tracker = ErrorTracker(verifier) if verifier is not None else None
        self.rollback_controller = (
            RollbackController(self.tracker, self.queue) if self.tracker is not None else None
        )
        self.pre_verifier = (
            PreVerifier(filesystem, process, PreVerifierConfig(timeout_s=self.config.verification_timeout_s))
            if process is not None
            else None
        )

        self.generator = generator
        self.planner = AIPlanner(generator) if generator is not None else None
        self.guard = ExecutionGuard()
        self.plan_executor = PlanExecutor(
            self.queue,
            verifier,
            content_generator=self.planner.generate_content if self.planner else None,
            observer=self.observers,
            stop_on_error=self.config.stop_on_error,
            guard=self.guard,
        )
        self.refinement = (
            RefinementLoop(
                self.plan_executor,
                verifier,
                self.planner,
                guard=self.guard,
                max_iterations=self.config.max_iterations,
                tracker=self.tracker,
                rollback_controller=self.rollback_controller,
            )
            if self.planner is not None and verifier is not None
            else None
        )
        self.plans: Dict[str, TaskPlan] = {}

        self.approvals = ApprovalManager(self.config.auto_approve)
        self.costs = CostTracker()
        self.handlers = handlers
        self.runner: Optional[OrchestrationRunner] = None
        self._tasks: Set[asyncio.Task] = set()

    # ==================== In-place updates ====================

    def set_observer(self, observer: Optional[EngineObserver]) -> None:
        """Swap the UI observer without touching engine state."""
        if self._observer is not None:
            self.observers.remove(self._observer)
        self._observer = observer
        if observer is not None:
            self.observers.add(observer)

    def update_config(self, config: EngineConfig) -> None:
        self.config = config
        self.queue.ledger.limit = config.history_limit
        self.checkpoints.resize(config.max_checkpoints)
        self.plan_executor.stop_on_error = config.stop_on_error
        if self.refinement is not None:
            self.refinement.max_iterations = config.max_iterations
        if isinstance(self.verifier, CommandVerifier):
            self.verifier.timeout_s = config.verification_timeout_s
        if self.pre_verifier is not None:
            self.pre_verifier.config.timeout_s = config.verification_timeout_s
        self.approvals.auto_approve = {ApprovalType(kind) for kind in config.auto_approve}
        if self.runner is not None and not self.runner.machine.is_terminal:
            self.runner.machine.gates = config.approval_gates
            self.runner.machine.context.max_iterations = config.max_iterations
        logger.info("Engine config updated")

    # ==================== Actions ====================

    async def enqueue(self, actions: Sequence[Action]) -> List[ActionHandle]:
        return await self.queue.enqueue(actions)

    async def generate(self, prompt: str, context: Optional[Dict[str, Any]] = None) -> List[ActionHandle]:
        """Ask the AI collaborator for actions and enqueue them."""
        generator = self._require_generator()
        actions = await generator.generate_actions(prompt, context)
        self._record_usage("generation")
        return await self.queue.enqueue(actions)

    def history(self) -> List[HistoryEntry]:
        return self.queue.get_history()

    async def rollback(self, entry_id: str) -> HistoryEntry:
        return await self.queue.rollback(entry_id)

    async def rollback_all(self) -> int:
        return await self.queue.rollback_all()

    async def retry(self, entry_id: str) -> ActionHandle:
        return await self.queue.retry_failed_action(entry_id)

    async def cancel_pending(self) -> int:
        return await self.queue.cancel_pending()

    def clear_history(self) -> int:
        return self.queue.clear_history()

    # ==================== Checkpoints ====================

    async def create_checkpoint(
        self, name: str, files: Optional[Sequence[str]] = None, description: str = ""
    ) -> Checkpoint:
        """Snapshot ``files``, or every project file when None."""
        if files is None:
            files = await self.filesystem.list("")
        async with self.queue.exclusive():
            return await self.checkpoints.create_checkpoint(name, files, description)

    async def restore_checkpoint(self, ref: str) -> RestoreResult:
        """Restore once queued work drains; actions enqueued during the restore apply after it."""
        await self.queue.wait_until_idle()
        async with self.queue.exclusive():
            return await self.checkpoints.restore_checkpoint(ref)

    # ==================== Verification / fixing ====================

    async def pre_verify(self) -> PreVerificationResult:
        if self.pre_verifier is None:
            raise WorkbenchError("No process runner configured for pre-verification")
        return await self.pre_verifier.run()

    async def fix_errors(self, prompt: str = DEFAULT_FIX_PROMPT) -> FixReport:
        """
        One explicit fix attempt.

        Runs the tiered pre-verification, asks the AI collaborator for fix
        actions, applies them with per-file verification (when configured),
        and rolls the whole attempt back if the error count went up.
        """
        generator = self._require_generator()
        if self.tracker is None or self.rollback_controller is None:
            raise WorkbenchError("No verifier configured")

        pre = await self.pre_verify() if self.pre_verifier is not None else None
        if pre is not None and pre.is_clean:
            return FixReport(status=NO_ERRORS_STATUS, pre_verification=pre)

        baseline = await self.tracker.capture_baseline(force=True)
        if baseline.total == 0 and (pre is None or pre.is_clean):
            return FixReport(status=NO_ERRORS_STATUS, pre_verification=pre)

        details = pre.error_details if pre is not None else self.tracker.evidence_report()
        actions = await generator.generate_actions(prompt, {"errors": details})
        self._record_usage("fix")

        self.queue.per_file_verification = self.config.per_file_verification
        try:
            entries = await self.queue.enqueue_and_wait(actions)
        finally:
            self.queue.per_file_verification = False

        applied = [e.id for e in entries if not e.failed]
        files = [a.path for a in actions if isinstance(a, FILE_ACTION_TYPES)]
        report = await self.rollback_controller.guard_fix_attempt(applied, files)
        self.observers.on_progress(report.status)
        return FixReport(status=report.status, pre_verification=pre, entries=entries, rollback=report)

    # ==================== Plans ====================

    async def propose_plan(self, prompt: str) -> TaskPlan:
        planner = self._require_planner()
        plan = await planner.generate_plan(prompt)
        self._record_usage("planning")
        self.plans[plan.id] = plan
        return plan

    async def execute_plan(self, plan_id: str) -> PlanRunReport:
        """Approve a proposed plan, execute it and refine on verification failure."""
        plan = self.plans.get(plan_id)
        if plan is None:
            raise KeyError(plan_id)
        if plan.status == PlanStatus.DRAFT:
            plan.status = PlanStatus.APPROVED

        execution = await self.plan_executor.execute(plan)
        report = PlanRunReport(plan=plan, execution=execution)
        if execution is None or execution.verification is None or execution.verification.success:
            return report
        if self.refinement is not None and execution.error is None:
            self.refinement.reset()
            report.refinement = await self.refinement.run(plan, execution.verification)
        return report

    # ==================== Orchestration ====================

    @property
    def machine(self) -> Optional[OrchestrationMachine]:
        return self.runner.machine if self.runner is not None else None

    def start_orchestration(self, prompt: str) -> OrchestrationMachine:
        """
        Start a new multi-phase orchestration and drive it in the background.

        Raises:
            OrchestrationError: If one is already active or no handlers are available
        """
        if self.runner is not None and self.runner.machine.state not in (
            OrchestrationState.IDLE,
            OrchestrationState.COMPLETE,
            OrchestrationState.FAILED,
        ):
            raise OrchestrationError("An orchestration is already active", self.runner.machine.state.value)

        machine = OrchestrationMachine(
            context=OrchestrationContext(
                original_prompt=prompt, max_iterations=self.config.max_iterations
            ),
            gates=self.config.approval_gates,
            observer=self.observers,
        )
        self.runner = OrchestrationRunner(
            machine,
            self._phase_handlers(),
            approvals=self.approvals,
            costs=self.costs,
            observer=self.observers,
        )
        self.runner.start(prompt)
        self._spawn(self.runner.run())
        return machine

    def approve(self) -> OrchestrationState:
        runner = self._require_runner()
        if runner.approve():
            self._spawn(runner.run())
        return runner.machine.state

    def reject(self, reason: Optional[str] = None) -> OrchestrationState:
        runner = self._require_runner()
        runner.reject(reason)
        return runner.machine.state

    def pause(self) -> OrchestrationState:
        runner = self._require_runner()
        runner.pause()
        return runner.machine.state

    def resume(self) -> OrchestrationState:
        runner = self._require_runner()
        if runner.resume():
            self._spawn(runner.run())
        return runner.machine.state

    def abort(self) -> OrchestrationState:
        runner = self._require_runner()
        runner.abort()
        return runner.machine.state

    async def wait_for_orchestration(self) -> Optional[OrchestrationState]:
        """Wait until no driver loop is running."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))
        return self.machine.state if self.machine is not None else None

    def orchestration_status(self) -> Dict[str, Any]:
        if self.runner is None:
            return {"state": None}
        status = self.runner.machine.to_dict()
        current = self.approvals.current()
        status["pending_approval"] = current.to_dict() if current else None
        status["cost"] = self.costs.statistics().total_cost
        return status

    async def shutdown(self) -> None:
        if self.runner is not None:
            self.runner.abort()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self.queue.shutdown()

    # ==================== Internals ====================

    def _phase_handlers(self) -> PhaseHandlers:
        if self.handlers is not None:
            return self.handlers
        planner = self._require_planner()
        self.handlers = GenerativePhaseHandlers(
            planner, self.plan_executor, self.verifier, costs=self.costs
        )
        return self.handlers

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _require_runner(self) -> OrchestrationRunner:
        if self.runner is None:
            raise OrchestrationError("No orchestration has been started")
        return self.runner

    def _require_generator(self) -> BaseGenerator:
        if self.generator is None:
            raise WorkbenchError("No generator configured")
        return self.generator

    def _require_planner(self) -> AIPlanner:
        if self.planner is None:
            raise OrchestrationError("No generator configured for planning")
        return self.planner

    def _record_usage(self, phase: str) -> None:
        usage = self.generator.last_usage if self.generator is not None else None
        if usage is not None:
            self.costs.record(usage.input_tokens, usage.output_tokens, "flash", phase=phase)
