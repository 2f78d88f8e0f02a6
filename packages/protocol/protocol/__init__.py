"""
Wire models shared by the engine packages.

All models are pydantic so that AI output and HTTP payloads are validated
for shape at the boundary.
"""

from protocol.actions import (
    Action,
    ActionStatus,
    DeleteAction,
    FILE_ACTION_TYPES,
    FileAction,
    ModifyAction,
    ShellAction,
    generate_action_id,
    new_content_of,
    parse_action,
)
from protocol.generation import (
    ActionProposalEvent,
    DoneEvent,
    ErrorEvent,
    GenerationEvent,
    TextEvent,
    TokenUsage,
)
from protocol.plans import (
    PlanStatus,
    PlanTask,
    TaskPlan,
    TaskStatus,
    TaskType,
    generate_plan_id,
)
from protocol.verification import (
    ErrorCategory,
    ErrorComparison,
    ErrorTrend,
    ErrorSnapshot,
    UNPARSED_FAILURE_CODE,
    VerificationError,
    VerificationResult,
)


def schema_for(model: type) -> dict:
    """Lightweight JSON schema helper."""
    return model.model_json_schema()


__all__ = [
    # Actions
    "Action",
    "ActionStatus",
    "DeleteAction",
    "FILE_ACTION_TYPES",
    "FileAction",
    "ModifyAction",
    "ShellAction",
    "generate_action_id",
    "new_content_of",
    "parse_action",

    # Generation stream
    "ActionProposalEvent",
    "DoneEvent",
    "ErrorEvent",
    "GenerationEvent",
    "TextEvent",
    "TokenUsage",

    # Plans
    "PlanStatus",
    "PlanTask",
    "TaskPlan",
    "TaskStatus",
    "TaskType",
    "generate_plan_id",

    # Verification
    "ErrorCategory",
    "ErrorComparison",
    "ErrorTrend",
    "ErrorSnapshot",
    "UNPARSED_FAILURE_CODE",
    "VerificationError",
    "VerificationResult",

    "schema_for",
]
