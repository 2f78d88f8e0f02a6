"""
Workbench Executor

Applies AI-proposed actions to a live project, one at a time, with enough
history to undo them.

Architecture:
    AI collaborator -> Action[]
        ↓
    ActionQueue -> backup, apply (filesystem / process), record
        ↓
    HistoryLedger -> rollback(id), rollback_all() newest first
        ↓
    RollbackController -> undo a fix attempt that raised the error count

    CheckpointStore -> named restore points over a file set

Key Principle: nothing mutates the project without a pre-image, and
nothing mutates it concurrently.
"""

from .errors import (
    WorkbenchError,
    ActionExecutionError,
    RollbackFailure,
    VerificationFailure,
    VerificationTimeout,
    OrchestrationError,
)

from .filesystem import FileSystem, LocalFileSystem, MemoryFileSystem, normalize_path

from .process import ProcessResult, ProcessRunner, SubprocessRunner

from .observer import EngineObserver, ObserverGroup

from .history import ActionResult, Backup, HistoryEntry, HistoryLedger

from .action_queue import (
    ActionHandle,
    ActionQueue,
    AUTO_ROLLBACK_REASON,
    CANCELLED_REASON,
    create_simple_diff,
)

from .checkpoints import Checkpoint, CheckpointStore, RestoreResult, DEFAULT_MAX_CHECKPOINTS

from .rollback import AutoRollbackReport, RollbackController, RollbackDecision, RollbackSeverity

from .events import Event, EventReader, EventType, JsonlEventLog

__all__ = [
    # Errors
    "WorkbenchError",
    "ActionExecutionError",
    "RollbackFailure",
    "VerificationFailure",
    "VerificationTimeout",
    "OrchestrationError",

    # Collaborators
    "FileSystem",
    "LocalFileSystem",
    "MemoryFileSystem",
    "normalize_path",
    "ProcessResult",
    "ProcessRunner",
    "SubprocessRunner",

    # Observers
    "EngineObserver",
    "ObserverGroup",
    "Event",
    "EventReader",
    "EventType",
    "JsonlEventLog",

    # Queue and history
    "ActionHandle",
    "ActionQueue",
    "AUTO_ROLLBACK_REASON",
    "CANCELLED_REASON",
    "create_simple_diff",
    "ActionResult",
    "Backup",
    "HistoryEntry",
    "HistoryLedger",

    # Rollback policy
    "AutoRollbackReport",
    "RollbackController",
    "RollbackDecision",
    "RollbackSeverity",

    # Checkpoints
    "Checkpoint",
    "CheckpointStore",
    "RestoreResult",
    "DEFAULT_MAX_CHECKPOINTS",
]

__version__ = "0.1.0"
