"""
OrchestrationRunner - the driver loop behind the state machine.

For each running state the runner awaits the matching PhaseHandlers
coroutine and feeds the outcome back to the machine as an event. It stops
at the synchronization points: awaiting-approval (unless that approval type
is auto-approved), paused, complete, failed and idle.

A handler that raises becomes an ERROR event. If the machine was paused
while a handler was in flight, the handler's completion event is held back
and delivered on resume; if it was aborted, the event is dropped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

from executor import EngineObserver, OrchestrationError
from protocol import VerificationResult

from .approvals import ApprovalManager
from .costs import CostTracker
from .machine import (
    OrchestrationContext,
    OrchestrationEvent,
    OrchestrationEventType,
    OrchestrationMachine,
    OrchestrationState,
    describe_state,
)

logger = logging.getLogger(__name__)

S = OrchestrationState
E = OrchestrationEventType

STOP_STATES = frozenset({S.AWAITING_APPROVAL, S.PAUSED, S.COMPLETE, S.FAILED, S.IDLE})


@dataclass
class ArchitectureResult:
    architecture_id: str
    phase_ids: List[str] = field(default_factory=list)


class PhaseHandlers(Protocol):
    async def research(self, context: OrchestrationContext) -> str:
        """Run research; return the research session id."""
        ...

    async def define_product(self, context: OrchestrationContext) -> str:
        """Write requirements; return the PRD id."""
        ...

    async def generate_architecture(self, context: OrchestrationContext) -> ArchitectureResult:
        ...

    async def execute_phase(self, phase_id: str, context: OrchestrationContext) -> bool:
        """Apply one implementation phase; True when every task applied."""
        ...

    async def verify(self, context: OrchestrationContext) -> VerificationResult:
        ...

    async def refine(
        self, verification: VerificationResult, context: OrchestrationContext
    ) -> None:
        ...


class OrchestrationRunner:
    def __init__(
        self,
        machine: OrchestrationMachine,
        handlers: PhaseHandlers,
        approvals: Optional[ApprovalManager] = None,
        costs: Optional[CostTracker] = None,
        observer: Optional[EngineObserver] = None,
    ):
        self.machine = machine
        self.handlers = handlers
        self.approvals = approvals or ApprovalManager()
        self.costs = costs or CostTracker()
        self.observer = observer or machine.observer
        self.last_verification: Optional[VerificationResult] = None
        self._deferred: Optional[OrchestrationEvent] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    # ==================== Commands ====================

    def start(self, prompt: str) -> bool:
        """Enter research. Follow with ``run()`` to drive the pipeline."""
        return self.machine.send(E.START_RESEARCH, prompt=prompt)

    def start_from(
        self,
        research_id: Optional[str] = None,
        prd_id: Optional[str] = None,
        architecture_id: Optional[str] = None,
        phase_ids: Optional[List[str]] = None,
    ) -> bool:
        """Enter the first stage whose artifact does not exist yet."""
        if self.machine.state != S.IDLE:
            logger.warning(f"start_from ignored in state {self.machine.state.value}")
            return False

        ctx = self.machine.context
        ctx.research_session_id = research_id
        ctx.prd_id = prd_id
        if architecture_id:
            ctx.architecture_id = architecture_id
            ctx.phase_ids = list(phase_ids or [])
            remaining = ctx.remaining_phases
            if not remaining:
                raise OrchestrationError("No phases to execute", S.IDLE.value)
            return self.machine.send(E.START_PHASE, phase_id=remaining[0])
        if prd_id:
            return self.machine.send(E.START_ARCHITECTURE)
        if research_id:
            return self.machine.send(E.START_PRODUCT_DEFINITION)
        return self.machine.send(E.START_RESEARCH, prompt=ctx.original_prompt)

    def approve(self) -> bool:
        request = self.approvals.current()
        if not self.machine.send(E.USER_APPROVE):
            return False
        if request is not None:
            self.approvals.approve(request.id)
        return True

    def reject(self, reason: Optional[str] = None) -> bool:
        request = self.approvals.current()
        if not self.machine.send(E.USER_REJECT, reason=reason):
            return False
        if request is not None:
            self.approvals.reject(request.id, reason)
        return True

    def pause(self) -> bool:
        return self.machine.send(E.USER_PAUSE)

    def resume(self) -> bool:
        """Return to the paused state, delivering any completion held back by the pause."""
        if not self.machine.send(E.USER_RESUME):
            return False
        deferred, self._deferred = self._deferred, None
        if deferred is not None:
            self.machine.send(deferred)
        return True

    def abort(self) -> bool:
        self._deferred = None
        if not self.machine.send(E.USER_ABORT):
            return False
        for request in self.approvals.pending_requests():
            self.approvals.reject(request.id, "Aborted")
        return True

    # ==================== Driver loop ====================

    async def run(self) -> OrchestrationState:
        """Drive the machine until it reaches a stop state."""
        if self._running:
            return self.machine.state
        self._running = True
        try:
            while True:
                state = self.machine.state
                if state == S.AWAITING_APPROVAL:
                    if self._auto_approve():
                        continue
                    self._request_approval()
                    break
                if state in STOP_STATES:
                    break
                await self._step(state)
        finally:
            self._running = False
        logger.info(f"Runner stopped in {self.machine.state.value}")
        return self.machine.state

    async def _step(self, state: OrchestrationState) -> None:
        self.observer.on_progress(describe_state(state))
        try:
            event = await self._handle(state)
        except Exception as exc:
            message = exc.message if isinstance(exc, OrchestrationError) else str(exc)
            message = message or exc.__class__.__name__
            logger.error(f"Handler for {state.value} failed: {message}")
            self._deferred = None
            self.machine.send(E.ERROR, message=message)
            return

        current = self.machine.state
        if current == state:
            self.machine.send(event)
        elif current == S.PAUSED:
            self._deferred = event
        else:
            logger.info(f"Dropping {event.type.value}: machine moved to {current.value}")

    async def _handle(self, state: OrchestrationState) -> OrchestrationEvent:
        ctx = self.machine.context
        handlers = self.handlers

        if state == S.RESEARCHING:
            session_id = await handlers.research(ctx)
            return OrchestrationEvent(E.RESEARCH_COMPLETE, {"session_id": session_id})
        if state == S.DEFINING_PRODUCT:
            prd_id = await handlers.define_product(ctx)
            return OrchestrationEvent(E.PRODUCT_DEFINED, {"prd_id": prd_id})
        if state == S.GENERATING_ARCHITECTURE:
            result = await handlers.generate_architecture(ctx)
            return OrchestrationEvent(
                E.ARCHITECTURE_COMPLETE,
                {"architecture_id": result.architecture_id, "phase_ids": result.phase_ids},
            )
        if state == S.PLANNING_PHASE:
            remaining = ctx.remaining_phases
            if not remaining:
                raise OrchestrationError("No phase left to plan", state.value)
            return OrchestrationEvent(E.START_PHASE, {"phase_id": remaining[0]})
        if state == S.EXECUTING_PHASE:
            phase_id = ctx.current_phase_id
            if phase_id is None:
                raise OrchestrationError("No current phase to execute", state.value)
            success = await handlers.execute_phase(phase_id, ctx)
            return OrchestrationEvent(E.PHASE_COMPLETE, {"phase_id": phase_id, "success": success})
        if state == S.VERIFYING:
            result = await handlers.verify(ctx)
            self.last_verification = result
            return OrchestrationEvent(
                E.VERIFICATION_COMPLETE,
                {"success": result.success, "errors": [e.format() for e in result.errors]},
            )
        if state == S.REFINING:
            if self.last_verification is None:
                raise OrchestrationError("Nothing to refine", state.value)
            await handlers.refine(self.last_verification, ctx)
            return OrchestrationEvent(E.REFINEMENT_COMPLETE, {})
        raise OrchestrationError(f"No handler for state {state.value}", state.value)

    def _auto_approve(self) -> bool:
        kind = self.machine.approval_type()
        if kind is None or not self.approvals.is_auto_approved(kind):
            return False
        self.approvals.request(kind, f"Auto-approved {kind}")
        logger.info(f"Auto-approving {kind}")
        return self.machine.send(E.USER_APPROVE)

    def _request_approval(self) -> None:
        if self.approvals.has_pending():
            return
        kind = self.machine.approval_type() or "phase"
        ctx = self.machine.context
        self.approvals.request(
            kind,
            f"Approve {kind}",
            description=describe_state(self.machine.state),
            content={
                "research_session_id": ctx.research_session_id,
                "prd_id": ctx.prd_id,
                "architecture_id": ctx.architecture_id,
                "current_phase_id": ctx.current_phase_id,
            },
        )
