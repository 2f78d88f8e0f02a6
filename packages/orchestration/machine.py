"""
Orchestration State Machine - multi-phase project pipeline.

State Flow:
    idle → researching → defining-product → generating-architecture
         → planning-phase → executing-phase → verifying ⇄ refining → complete

    Any finished stage may stop in awaiting-approval (per-stage gate flags).
    Running states may be paused; resume returns to the exact prior state.
    USER_ABORT and ERROR move any state to failed, which is terminal.

Philosophy:
- Transitions are table-driven and deterministic
- An event that is not valid for the current state is logged and ignored
- The machine knows nothing about how phases are executed; it only holds
  OrchestrationContext and notifies an EngineObserver
"""

from __future__ import annotations

import copy
import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from executor import EngineObserver

from .config import ApprovalGates

logger = logging.getLogger(__name__)


class OrchestrationState(str, Enum):
    IDLE = "idle"
    RESEARCHING = "researching"
    DEFINING_PRODUCT = "defining-product"
    GENERATING_ARCHITECTURE = "generating-architecture"
    PLANNING_PHASE = "planning-phase"
    EXECUTING_PHASE = "executing-phase"
    VERIFYING = "verifying"
    REFINING = "refining"
    AWAITING_APPROVAL = "awaiting-approval"
    PAUSED = "paused"
    COMPLETE = "complete"
    FAILED = "failed"


class OrchestrationEventType(str, Enum):
    START_RESEARCH = "START_RESEARCH"
    RESEARCH_COMPLETE = "RESEARCH_COMPLETE"
    START_PRODUCT_DEFINITION = "START_PRODUCT_DEFINITION"
    PRODUCT_DEFINED = "PRODUCT_DEFINED"
    START_ARCHITECTURE = "START_ARCHITECTURE"
    ARCHITECTURE_COMPLETE = "ARCHITECTURE_COMPLETE"
    START_PHASE = "START_PHASE"
    PHASE_COMPLETE = "PHASE_COMPLETE"
    VERIFICATION_COMPLETE = "VERIFICATION_COMPLETE"
    REFINEMENT_COMPLETE = "REFINEMENT_COMPLETE"
    USER_APPROVE = "USER_APPROVE"
    USER_REJECT = "USER_REJECT"
    USER_PAUSE = "USER_PAUSE"
    USER_RESUME = "USER_RESUME"
    USER_ABORT = "USER_ABORT"
    ERROR = "ERROR"
    RESET = "RESET"


S = OrchestrationState
E = OrchestrationEventType

RUNNING_STATES = frozenset({
    S.RESEARCHING,
    S.DEFINING_PRODUCT,
    S.GENERATING_ARCHITECTURE,
    S.PLANNING_PHASE,
    S.EXECUTING_PHASE,
    S.VERIFYING,
    S.REFINING,
})

TERMINAL_STATES = frozenset({S.COMPLETE, S.FAILED})

# Targets marked "resolved" below depend on gates or context; see _resolve_target.
TRANSITIONS: Dict[OrchestrationState, Dict[OrchestrationEventType, OrchestrationState]] = {
    S.IDLE: {
        E.START_RESEARCH: S.RESEARCHING,
        E.START_PRODUCT_DEFINITION: S.DEFINING_PRODUCT,
        E.START_ARCHITECTURE: S.GENERATING_ARCHITECTURE,
        E.START_PHASE: S.PLANNING_PHASE,
    },
    S.RESEARCHING: {E.RESEARCH_COMPLETE: S.DEFINING_PRODUCT},  # resolved
    S.DEFINING_PRODUCT: {E.PRODUCT_DEFINED: S.GENERATING_ARCHITECTURE},  # resolved
    S.GENERATING_ARCHITECTURE: {E.ARCHITECTURE_COMPLETE: S.PLANNING_PHASE},  # resolved
    S.PLANNING_PHASE: {E.START_PHASE: S.EXECUTING_PHASE},
    S.EXECUTING_PHASE: {E.PHASE_COMPLETE: S.VERIFYING},
    S.VERIFYING: {E.VERIFICATION_COMPLETE: S.COMPLETE},  # resolved
    S.REFINING: {E.REFINEMENT_COMPLETE: S.VERIFYING},
    S.AWAITING_APPROVAL: {
        E.USER_APPROVE: S.PLANNING_PHASE,  # resolved
        E.USER_REJECT: S.FAILED,
    },
    S.PAUSED: {E.USER_RESUME: S.IDLE},  # resolved to the remembered state
    S.COMPLETE: {E.RESET: S.IDLE},
    S.FAILED: {},
}

for _state in RUNNING_STATES:
    TRANSITIONS[_state][E.USER_PAUSE] = S.PAUSED
for _state, _table in TRANSITIONS.items():
    if _state != S.FAILED:
        _table[E.USER_ABORT] = S.FAILED
        _table[E.ERROR] = S.FAILED

AUTO_SNAPSHOT_STATES = frozenset({S.AWAITING_APPROVAL, S.COMPLETE, S.FAILED})

STAGES = [
    ("Research", S.RESEARCHING),
    ("Product Definition", S.DEFINING_PRODUCT),
    ("Architecture", S.GENERATING_ARCHITECTURE),
    ("Implementation", S.EXECUTING_PHASE),
    ("Verification", S.VERIFYING),
]

STATE_DESCRIPTIONS = {
    S.IDLE: "Ready to start",
    S.RESEARCHING: "Conducting research",
    S.DEFINING_PRODUCT: "Creating product requirements",
    S.GENERATING_ARCHITECTURE: "Designing technical architecture",
    S.PLANNING_PHASE: "Planning implementation phase",
    S.EXECUTING_PHASE: "Executing implementation",
    S.VERIFYING: "Verifying build",
    S.REFINING: "Fixing errors",
    S.AWAITING_APPROVAL: "Waiting for your approval",
    S.PAUSED: "Paused",
    S.COMPLETE: "Project complete",
    S.FAILED: "Failed - manual intervention needed",
}

MAX_ATTEMPTS_REASON = "max attempts reached"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def describe_state(state: OrchestrationState) -> str:
    return STATE_DESCRIPTIONS[OrchestrationState(state)]


@dataclass
class OrchestrationEvent:
    type: OrchestrationEventType
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class FailedPhase:
    phase_id: str
    reason: str


@dataclass
class OrchestrationMetrics:
    total_duration_s: float = 0.0
    research_duration_s: Optional[float] = None
    planning_duration_s: Optional[float] = None
    implementation_duration_s: float = 0.0
    verification_attempts: int = 0


@dataclass
class OrchestrationContext:
    """Everything the pipeline has produced so far. Created at start, kept until terminal."""

    original_prompt: str = ""
    project_id: str = field(default_factory=lambda: f"proj_{uuid.uuid4().hex[:10]}")
    research_session_id: Optional[str] = None
    prd_id: Optional[str] = None
    architecture_id: Optional[str] = None
    current_phase_id: Optional[str] = None
    phase_ids: List[str] = field(default_factory=list)
    completed_phases: List[str] = field(default_factory=list)
    failed_phases: List[FailedPhase] = field(default_factory=list)
    current_iteration: int = 0
    max_iterations: int = 3
    error: Optional[str] = None
    started_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    phase_started_at: Optional[datetime] = None
    metrics: OrchestrationMetrics = field(default_factory=OrchestrationMetrics)

    @property
    def remaining_phases(self) -> List[str]:
        return [p for p in self.phase_ids if p not in self.completed_phases]

    @property
    def has_more_phases(self) -> bool:
        return bool(self.remaining_phases)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ("started_at", "updated_at", "phase_started_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


@dataclass(frozen=True)
class MachineSnapshot:
    id: str
    state: OrchestrationState
    previous_state: Optional[OrchestrationState]
    context: OrchestrationContext
    reason: str
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class ExecutionProgress:
    percentage: int
    stage: str
    stage_details: str
    completed_stages: List[str]
    remaining_stages: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class OrchestrationMachine:
    """
    Table-driven state machine carrying an OrchestrationContext.

    ``send`` is the only way to change state; it returns False (and leaves
    state and context untouched) for events the current state does not accept.
    """

    def __init__(
        self,
        context: Optional[OrchestrationContext] = None,
        gates: Optional[ApprovalGates] = None,
        observer: Optional[EngineObserver] = None,
    ):
        self.context = context or OrchestrationContext()
        self.gates = gates or ApprovalGates()
        self.observer = observer or EngineObserver()
        self._state = S.IDLE
        self._previous_state: Optional[OrchestrationState] = None
        self._snapshots: Dict[str, MachineSnapshot] = {}
        self.history: List[Dict[str, str]] = []

    @property
    def state(self) -> OrchestrationState:
        return self._state

    @property
    def previous_state(self) -> Optional[OrchestrationState]:
        """State remembered by USER_PAUSE, restored by USER_RESUME."""
        return self._previous_state

    @property
    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES

    # ==================== Events ====================

    def send(
        self,
        event: Union[OrchestrationEvent, OrchestrationEventType, str],
        **payload: Any,
    ) -> bool:
        if not isinstance(event, OrchestrationEvent):
            event = OrchestrationEvent(OrchestrationEventType(event), dict(payload))

        table = TRANSITIONS[self._state]
        if event.type not in table:
            logger.warning(
                f"Ignoring {event.type.value} in state {self._state.value}"
            )
            return False

        from_state = self._state
        self._apply_event(event)
        to_state = self._resolve_target(event, table[event.type])

        if event.type == E.USER_PAUSE:
            self._previous_state = from_state
        elif event.type == E.USER_RESUME:
            self._previous_state = None

        self._state = to_state
        self.context.updated_at = _utcnow()
        self.history.append({
            "from": from_state.value,
            "to": to_state.value,
            "event": event.type.value,
            "timestamp": self.context.updated_at.isoformat(),
        })
        logger.info(f"Orchestration {from_state.value} -> {to_state.value} ({event.type.value})")

        self.observer.on_state_change(from_state.value, to_state.value, self.context)
        self._notify(event, to_state)

        if to_state in AUTO_SNAPSHOT_STATES and to_state != from_state:
            self.save_snapshot("auto")
        return True

    def pause(self) -> bool:
        return self.send(E.USER_PAUSE)

    def resume(self) -> bool:
        return self.send(E.USER_RESUME)

    def _resolve_target(
        self, event: OrchestrationEvent, default: OrchestrationState
    ) -> OrchestrationState:
        ctx = self.context
        if event.type == E.RESEARCH_COMPLETE:
            return S.AWAITING_APPROVAL if self.gates.research else S.DEFINING_PRODUCT
        if event.type == E.PRODUCT_DEFINED:
            return S.AWAITING_APPROVAL if self.gates.prd else S.GENERATING_ARCHITECTURE
        if event.type == E.ARCHITECTURE_COMPLETE:
            if self.gates.architecture:
                return S.AWAITING_APPROVAL
            return S.PLANNING_PHASE if ctx.has_more_phases else S.COMPLETE
        if event.type == E.VERIFICATION_COMPLETE:
            if event.payload.get("success"):
                if self.gates.phase:
                    return S.AWAITING_APPROVAL
                return S.PLANNING_PHASE if ctx.has_more_phases else S.COMPLETE
            if ctx.current_iteration < ctx.max_iterations:
                return S.REFINING
            return S.FAILED
        if event.type == E.USER_APPROVE:
            return self._next_state_after_approval()
        if event.type == E.USER_RESUME:
            return self._previous_state or S.IDLE
        return default

    def _next_state_after_approval(self) -> OrchestrationState:
        ctx = self.context
        if ctx.research_session_id and not ctx.prd_id:
            return S.DEFINING_PRODUCT
        if ctx.prd_id and not ctx.architecture_id:
            return S.GENERATING_ARCHITECTURE
        if ctx.has_more_phases:
            return S.PLANNING_PHASE
        return S.COMPLETE

    def _apply_event(self, event: OrchestrationEvent) -> None:
        ctx = self.context
        payload = event.payload
        now = _utcnow()

        if event.type == E.START_RESEARCH:
            if payload.get("prompt"):
                ctx.original_prompt = payload["prompt"]
            ctx.started_at = now
        elif event.type == E.RESEARCH_COMPLETE:
            ctx.research_session_id = payload.get("session_id")
            ctx.metrics.research_duration_s = (now - ctx.started_at).total_seconds()
        elif event.type == E.PRODUCT_DEFINED:
            ctx.prd_id = payload.get("prd_id")
            since = ctx.phase_started_at or ctx.started_at
            ctx.metrics.planning_duration_s = (ctx.metrics.planning_duration_s or 0.0) + (
                now - since
            ).total_seconds()
        elif event.type == E.ARCHITECTURE_COMPLETE:
            ctx.architecture_id = payload.get("architecture_id")
            if payload.get("phase_ids") is not None:
                ctx.phase_ids = list(payload["phase_ids"])
        elif event.type == E.START_PHASE:
            phase_id = payload.get("phase_id")
            if phase_id:
                ctx.current_phase_id = phase_id
                if phase_id not in ctx.phase_ids:
                    ctx.phase_ids.append(phase_id)
            ctx.phase_started_at = now
            ctx.current_iteration = 0
        elif event.type == E.PHASE_COMPLETE:
            phase_id = payload.get("phase_id") or ctx.current_phase_id
            if ctx.phase_started_at is not None:
                ctx.metrics.implementation_duration_s += (now - ctx.phase_started_at).total_seconds()
            if not payload.get("success", True) and phase_id:
                ctx.failed_phases.append(
                    FailedPhase(phase_id, payload.get("reason") or "Execution failed")
                )
        elif event.type == E.VERIFICATION_COMPLETE:
            ctx.metrics.verification_attempts += 1
            if payload.get("success"):
                phase_id = ctx.current_phase_id
                if phase_id and phase_id not in ctx.completed_phases:
                    ctx.completed_phases.append(phase_id)
            elif ctx.current_iteration >= ctx.max_iterations:
                ctx.error = MAX_ATTEMPTS_REASON
        elif event.type == E.REFINEMENT_COMPLETE:
            ctx.current_iteration += 1
        elif event.type == E.USER_REJECT:
            ctx.error = payload.get("reason") or "Rejected by user"
        elif event.type == E.USER_ABORT:
            ctx.error = "Aborted by user"
        elif event.type == E.ERROR:
            ctx.error = payload.get("message") or "Unknown error"
        elif event.type == E.RESET:
            self.context = OrchestrationContext(
                original_prompt=ctx.original_prompt,
                project_id=ctx.project_id,
                max_iterations=ctx.max_iterations,
            )

    def _notify(self, event: OrchestrationEvent, to_state: OrchestrationState) -> None:
        ctx = self.context
        if event.type == E.RESEARCH_COMPLETE:
            self.observer.on_research_complete(ctx.research_session_id)
        elif event.type == E.PRODUCT_DEFINED:
            self.observer.on_prd_ready(ctx.prd_id)
        elif event.type == E.ARCHITECTURE_COMPLETE:
            self.observer.on_architecture_ready(ctx.architecture_id)

        if to_state == S.AWAITING_APPROVAL:
            self.observer.on_approval_needed(self.approval_type())
        elif to_state == S.COMPLETE:
            ctx.metrics.total_duration_s = (_utcnow() - ctx.started_at).total_seconds()
            self.observer.on_complete(ctx)
        elif to_state == S.FAILED:
            self.observer.on_error(ctx.error or "Orchestration failed")

    # ==================== Queries ====================

    def available_events(self) -> List[OrchestrationEventType]:
        return list(TRANSITIONS[self._state])

    def allows_user_intervention(self) -> bool:
        return self._state in (S.AWAITING_APPROVAL, S.PAUSED, S.FAILED)

    def approval_type(self) -> Optional[str]:
        """What the pending approval is for: research, prd, architecture, phase (or None)."""
        ctx = self.context
        if ctx.research_session_id and not ctx.prd_id:
            return "research"
        if ctx.prd_id and not ctx.architecture_id:
            return "prd"
        if ctx.architecture_id and not ctx.completed_phases:
            return "architecture"
        if ctx.current_phase_id:
            return "phase"
        return None

    def describe_state(self) -> str:
        return describe_state(self._state)

    def progress(self) -> ExecutionProgress:
        names = [name for name, _ in STAGES]
        if self._state == S.COMPLETE:
            return ExecutionProgress(100, "Complete", self.describe_state(), names, [])

        index = self._stage_index()
        if index < 0:
            return ExecutionProgress(0, self.describe_state(), self.describe_state(), [], names)

        percentage = round((index + 0.5) / len(STAGES) * 100)
        return ExecutionProgress(
            percentage=min(percentage, 99),
            stage=names[index],
            stage_details=self.describe_state(),
            completed_stages=names[:index],
            remaining_stages=names[index + 1:],
        )

    def _stage_index(self) -> int:
        state = self._state
        if state == S.PAUSED and self._previous_state is not None:
            state = self._previous_state
        if state == S.AWAITING_APPROVAL:
            state = self._last_active_state()
        elif state == S.PLANNING_PHASE:
            state = S.EXECUTING_PHASE
        elif state == S.REFINING:
            state = S.VERIFYING
        for index, (_, stage_state) in enumerate(STAGES):
            if stage_state == state:
                return index
        return -1

    def _last_active_state(self) -> OrchestrationState:
        ctx = self.context
        if ctx.completed_phases:
            return S.EXECUTING_PHASE
        if ctx.architecture_id:
            return S.GENERATING_ARCHITECTURE
        if ctx.prd_id:
            return S.DEFINING_PRODUCT
        if ctx.research_session_id:
            return S.RESEARCHING
        return S.IDLE

    # ==================== Snapshots ====================

    def save_snapshot(self, reason: str = "manual") -> MachineSnapshot:
        snapshot = MachineSnapshot(
            id=f"snap_{uuid.uuid4().hex[:10]}",
            state=self._state,
            previous_state=self._previous_state,
            context=copy.deepcopy(self.context),
            reason=reason,
        )
        self._snapshots[snapshot.id] = snapshot
        return snapshot

    def snapshots(self) -> List[MachineSnapshot]:
        return list(self._snapshots.values())

    def restore_snapshot(self, snapshot_id: str) -> bool:
        snapshot = self._snapshots.get(snapshot_id)
        if snapshot is None:
            return False
        from_state = self._state
        self._state = snapshot.state
        self._previous_state = snapshot.previous_state
        self.context = copy.deepcopy(snapshot.context)
        self.context.updated_at = _utcnow()
        logger.info(f"Restored orchestration snapshot {snapshot_id} ({snapshot.state.value})")
        self.observer.on_state_change(from_state.value, self._state.value, self.context)
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self._state.value,
            "previous_state": self._previous_state.value if self._previous_state else None,
            "description": self.describe_state(),
            "approval_type": self.approval_type() if self._state == S.AWAITING_APPROVAL else None,
            "available_events": [e.value for e in self.available_events()],
            "progress": self.progress().to_dict(),
            "context": self.context.to_dict(),
        }
