"""
Auto-rollback policy for fix attempts.

After a fix attempt the controller compares the post-attempt error state
against the baseline. If the total went up by more than
``max_error_increase`` it rolls back the attempt's actions (newest first)
and reports the before/after delta.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Protocol

from protocol import ErrorComparison

logger = logging.getLogger(__name__)


class RollbackSeverity(str, Enum):
    NONE = "none"
    WARNING = "warning"
    CRITICAL = "critical"


class ErrorStateSource(Protocol):
    async def check_error_state(self) -> Optional[ErrorComparison]:
        ...


class RollbackTarget(Protocol):
    async def rollback_actions(self, entry_ids: Optional[Iterable[str]]) -> int:
        ...


@dataclass
class RollbackDecision:
    should_rollback: bool
    reason: str
    files: List[str] = field(default_factory=list)
    severity: RollbackSeverity = RollbackSeverity.NONE


@dataclass
class AutoRollbackReport:
    decision: RollbackDecision
    comparison: Optional[ErrorComparison]
    rolled_back_count: int = 0

    @property
    def rolled_back(self) -> bool:
        return self.rolled_back_count > 0

    @property
    def status(self) -> str:
        if self.comparison is None:
            return "no baseline - rollback check skipped"
        before = self.comparison.baseline.total
        after = self.comparison.current.total
        if self.rolled_back:
            return f"rolled back - fix introduced regressions ({before} -> {after})"
        if self.comparison.decreased:
            return f"fix reduced errors ({before} -> {after})"
        return self.comparison.summary

    def to_dict(self) -> dict:
        return {
            "rolled_back": self.rolled_back,
            "rolled_back_count": self.rolled_back_count,
            "severity": self.decision.severity.value,
            "reason": self.decision.reason,
            "files": self.decision.files,
            "delta": self.comparison.delta if self.comparison else None,
            "status": self.status,
        }


class RollbackController:
    def __init__(
        self,
        tracker: ErrorStateSource,
        target: RollbackTarget,
        max_error_increase: int = 0,
        enabled: bool = True,
    ):
        self.tracker = tracker
        self.target = target
        self.max_error_increase = max_error_increase
        self.enabled = enabled

    def evaluate(
        self, comparison: Optional[ErrorComparison], files: Iterable[str] = ()
    ) -> RollbackDecision:
        files = list(files)
        if comparison is None:
            return RollbackDecision(False, "No baseline for comparison", files)
        if comparison.verification_broken or comparison.delta > self.max_error_increase:
            return RollbackDecision(
                should_rollback=self.enabled,
                reason=comparison.summary,
                files=files,
                severity=RollbackSeverity.CRITICAL,
            )
        severity = RollbackSeverity.NONE if comparison.decreased else RollbackSeverity.WARNING
        return RollbackDecision(False, comparison.summary, files, severity)

    async def guard_fix_attempt(
        self, action_ids: Iterable[str], files: Iterable[str] = ()
    ) -> AutoRollbackReport:
        """Check the error state after a fix attempt; undo the attempt on regression."""
        action_ids = list(action_ids)
        comparison = await self.tracker.check_error_state()
        decision = self.evaluate(comparison, files)
        report = AutoRollbackReport(decision=decision, comparison=comparison)
        if decision.should_rollback and action_ids:
            report.rolled_back_count = await self.target.rollback_actions(action_ids)
            logger.warning(
                f"Auto-rollback of {report.rolled_back_count} action(s): {decision.reason}"
            )
        return report
