"""
Error Tracker - baseline vs current error comparison.

capture_baseline() records the error state before a change;
check_error_state() re-verifies and classifies the result as increased,
decreased or unchanged. That comparison is what the auto-rollback policy
acts on.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from protocol import (
    ErrorComparison,
    ErrorSnapshot,
    ErrorTrend,
    VerificationError,
    VerificationResult,
)

from .verifier import Verifier

logger = logging.getLogger(__name__)


def compare_results(baseline: VerificationResult, current: VerificationResult) -> ErrorComparison:
    before = baseline.snapshot()
    after = current.snapshot()
    delta = after.total - before.total
    broken = current.has_unparsed_failure and not baseline.has_unparsed_failure

    if broken:
        trend = ErrorTrend.INCREASED
        summary = f"Verification failed with unreadable output ({before.total} -> {after.total})"
    elif delta > 0:
        trend = ErrorTrend.INCREASED
        summary = f"Error count increased by {delta} ({before.total} -> {after.total})"
    elif delta < 0:
        trend = ErrorTrend.DECREASED
        summary = f"Error count decreased by {-delta} ({before.total} -> {after.total})"
    else:
        trend = ErrorTrend.UNCHANGED
        summary = "No change in error count"

    baseline_keys = {_key(e) for e in _blocking(baseline.errors)}
    current_keys = {_key(e) for e in _blocking(current.errors)}
    return ErrorComparison(
        baseline=before,
        current=after,
        trend=trend,
        delta=delta,
        summary=summary,
        new_errors=[e for e in _blocking(current.errors) if _key(e) not in baseline_keys],
        fixed_errors=[e for e in _blocking(baseline.errors) if _key(e) not in current_keys],
        verification_broken=broken,
    )


def _blocking(errors: List[VerificationError]) -> List[VerificationError]:
    return [e for e in errors if e.severity == "error"]


def _key(error: VerificationError) -> str:
    return f"{error.category.value}|{error.identity()}"


class ErrorTracker:
    def __init__(self, verifier: Verifier):
        self.verifier = verifier
        self.baseline: Optional[VerificationResult] = None
        self.current: Optional[VerificationResult] = None
        self.last_comparison: Optional[ErrorComparison] = None

    @property
    def has_baseline(self) -> bool:
        return self.baseline is not None

    async def capture_baseline(
        self, result: Optional[VerificationResult] = None, force: bool = False
    ) -> ErrorSnapshot:
        """
        Store the baseline error state.

        Args:
            result: An existing verification pass to reuse instead of running one
            force: Re-run verification even if a baseline is already held
        """
        if result is not None:
            self.baseline = result
        elif self.baseline is None or force:
            self.baseline = await self.verifier.verify()
        self.current = None
        self.last_comparison = None
        snapshot = self.baseline.snapshot()
        logger.info(f"Captured error baseline: {snapshot.total} error(s)")
        return snapshot

    async def check_error_state(self) -> Optional[ErrorComparison]:
        """Re-verify and compare against the baseline. None when no baseline was captured."""
        if self.baseline is None:
            logger.warning("check_error_state called without a baseline")
            return None
        self.current = await self.verifier.verify()
        self.last_comparison = compare_results(self.baseline, self.current)
        logger.info(f"Error state: {self.last_comparison.summary}")
        return self.last_comparison

    def reset(self) -> None:
        self.baseline = None
        self.current = None
        self.last_comparison = None

    def evidence_report(self) -> str:
        """Markdown report of baseline vs current error state."""
        if self.baseline is None:
            return "## Error Evidence\n\nNo baseline captured."

        lines = ["## Error Evidence", ""]
        before = self.baseline.snapshot()
        after = self.current.snapshot() if self.current is not None else None

        lines.append("| Category | Baseline | Current |")
        lines.append("|---|---|---|")
        for label, attr in _CATEGORY_FIELDS.items():
            current_value = getattr(after, attr) if after is not None else "-"
            lines.append(f"| {label} | {getattr(before, attr)} | {current_value} |")
        lines.append(f"| Total | {before.total} | {after.total if after is not None else '-'} |")

        comparison = self.last_comparison
        if comparison is not None:
            lines += ["", f"**Result:** {comparison.summary}"]
            if comparison.new_errors:
                lines += ["", "### New errors"]
                lines += [f"- {e.format()}" for e in comparison.new_errors[:20]]
            if comparison.fixed_errors:
                lines += ["", "### Fixed errors"]
                lines += [f"- {e.format()}" for e in comparison.fixed_errors[:20]]
        return "\n".join(lines)


_CATEGORY_FIELDS: Dict[str, str] = {
    "Type": "type_errors",
    "Module": "module_errors",
    "Runtime": "runtime_errors",
    "Lint": "lint_errors",
}
