"""
Orchestration - multi-phase project generation.

Architecture:
    idle ──► researching ──► defining-product ──► generating-architecture
                                                         │
                 ┌───────────────────────────────────────┘
                 ▼
    planning-phase ──► executing-phase ──► verifying ──► (next phase | complete)
                                               │  ▲
                                               ▼  │
                                             refining   (at most max_iterations)

    awaiting-approval gates research / prd / architecture / phase results.
    paused remembers where it came from; failed and complete are terminal.

Components:
- machine:   OrchestrationMachine (pure transition table + context)
- runner:    OrchestrationRunner (drives the machine through PhaseHandlers)
- handlers:  GenerativePhaseHandlers (AI-backed phase work)
- approvals: ApprovalManager (pending requests, auto-approve, timeouts)
- costs:     CostTracker (token usage and budget warnings)
- engine:    WorkbenchEngine (one long-lived engine per project)
"""

from .config import APPROVAL_TYPES, DEFAULT_CONFIG_PATH, ApprovalGates, EngineConfig

from .machine import (
    AUTO_SNAPSHOT_STATES,
    MAX_ATTEMPTS_REASON,
    RUNNING_STATES,
    STAGES,
    TERMINAL_STATES,
    TRANSITIONS,
    ExecutionProgress,
    FailedPhase,
    MachineSnapshot,
    OrchestrationContext,
    OrchestrationEvent,
    OrchestrationEventType,
    OrchestrationMachine,
    OrchestrationMetrics,
    OrchestrationState,
    describe_state,
)

from .approvals import ApprovalDecision, ApprovalManager, ApprovalRequest, ApprovalStatus, ApprovalType

from .costs import (
    MODEL_COSTS,
    BudgetWarning,
    CostStatistics,
    CostTracker,
    UsageRecord,
    estimate_cost,
    format_cost,
    format_tokens,
)

from .runner import STOP_STATES, ArchitectureResult, OrchestrationRunner, PhaseHandlers

from .handlers import ArtifactDocument, DocumentStore, GenerativePhaseHandlers, parse_phases

from .engine import FixReport, PlanRunReport, WorkbenchEngine

__all__ = [
    # Config
    "APPROVAL_TYPES",
    "DEFAULT_CONFIG_PATH",
    "ApprovalGates",
    "EngineConfig",

    # State machine
    "AUTO_SNAPSHOT_STATES",
    "MAX_ATTEMPTS_REASON",
    "RUNNING_STATES",
    "STAGES",
    "TERMINAL_STATES",
    "TRANSITIONS",
    "ExecutionProgress",
    "FailedPhase",
    "MachineSnapshot",
    "OrchestrationContext",
    "OrchestrationEvent",
    "OrchestrationEventType",
    "OrchestrationMachine",
    "OrchestrationMetrics",
    "OrchestrationState",
    "describe_state",

    # Approvals
    "ApprovalDecision",
    "ApprovalManager",
    "ApprovalRequest",
    "ApprovalStatus",
    "ApprovalType",

    # Costs
    "MODEL_COSTS",
    "BudgetWarning",
    "CostStatistics",
    "CostTracker",
    "UsageRecord",
    "estimate_cost",
    "format_cost",
    "format_tokens",

    # Driving
    "STOP_STATES",
    "ArchitectureResult",
    "OrchestrationRunner",
    "PhaseHandlers",
    "ArtifactDocument",
    "DocumentStore",
    "GenerativePhaseHandlers",
    "parse_phases",

    # Engine
    "FixReport",
    "PlanRunReport",
    "WorkbenchEngine",
]
