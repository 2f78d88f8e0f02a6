"""Engine error taxonomy, shared by executor, verification, planner and orchestration."""

from __future__ import annotations

from typing import Any, List, Optional


class WorkbenchError(Exception):
    """Base class; ``code`` is a stable identifier for UI and API responses."""

    code: str = "WorkbenchError"


class ActionExecutionError(WorkbenchError):
    """A single Action failed. Captured into history, never raised out of the drain."""

    code = "ActionExecutionError"

    def __init__(self, action_id: str, message: str) -> None:
        self.action_id = action_id
        self.message = message
        super().__init__(f"Action {action_id} failed: {message}")


class RollbackFailure(WorkbenchError):
    """Missing backup, unknown entry, or failed restore write."""

    code = "RollbackFailure"

    def __init__(self, entry_id: str, reason: str) -> None:
        self.entry_id = entry_id
        self.reason = reason
        super().__init__(f"Cannot roll back {entry_id}: {reason}")


class VerificationFailure(WorkbenchError):
    code = "VerificationFailure"

    def __init__(self, errors: List[Any], message: Optional[str] = None) -> None:
        self.errors = list(errors)
        super().__init__(message or f"Verification failed with {len(self.errors)} error(s)")


class VerificationTimeout(WorkbenchError):
    """A check exceeded its bound. Callers treat it as a skipped check."""

    code = "VerificationTimeout"

    def __init__(self, check: str, timeout_s: float) -> None:
        self.check = check
        self.timeout_s = timeout_s
        super().__init__(f"{check} timed out after {timeout_s:g}s")


class OrchestrationError(WorkbenchError):
    code = "OrchestrationError"

    def __init__(self, message: str, state: Optional[str] = None) -> None:
        self.message = message
        self.state = state
        suffix = f" (state: {state})" if state else ""
        super().__init__(f"{message}{suffix}")
