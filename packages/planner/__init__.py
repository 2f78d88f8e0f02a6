"""
Planner - plan-based generation and bounded repair.

Architecture:
    AI output ──► parse_plan ──► TaskPlan (draft)
                                     │ user approves
                                     ▼
                               PlanExecutor ──► ActionQueue ──► Verifier
                                     │ verification failed
                                     ▼
                               RefinementLoop ──► AIPlanner.refine (scoped to failing files)
                                     │               │
                                     │               ▼
                                     └──── run_tasks + re-verify, at most max_iterations

PlanExecutor and RefinementLoop share one ExecutionGuard: while one runs,
starting the other is a no-op.
"""

from .ai import AIPlanner
from .guard import EXECUTING, REFINING, ExecutionGuard
from .plan_executor import ContentGenerator, PlanExecutionResult, PlanExecutor, TaskRunResult
from .plan_parser import PlanParseError, RefinementProposal, parse_plan, parse_refinement, plan_from_dict
from .refiner import (
    DEFAULT_MAX_ITERATIONS,
    RefinementAttempt,
    RefinementGenerator,
    RefinementLoop,
    RefinementOutcome,
    RefinementStatus,
)

__all__ = [
    # Parsing
    "PlanParseError",
    "RefinementProposal",
    "parse_plan",
    "parse_refinement",
    "plan_from_dict",
    # AI collaborator
    "AIPlanner",
    # Execution
    "ContentGenerator",
    "ExecutionGuard",
    "EXECUTING",
    "REFINING",
    "PlanExecutionResult",
    "PlanExecutor",
    "TaskRunResult",
    # Refinement
    "DEFAULT_MAX_ITERATIONS",
    "RefinementAttempt",
    "RefinementGenerator",
    "RefinementLoop",
    "RefinementOutcome",
    "RefinementStatus",
]
