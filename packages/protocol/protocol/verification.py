from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Code for a failed verification step whose output named no parseable error.
UNPARSED_FAILURE_CODE = "UNPARSED"


class ErrorCategory(str, Enum):
    TYPE = "type"
    MODULE = "module"
    RUNTIME = "runtime"
    LINT = "lint"


class VerificationError(BaseModel):
    """One categorized error reported by a verification pass."""

    category: ErrorCategory
    message: str
    file: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None
    code: Optional[str] = None
    severity: str = "error"

    def identity(self) -> str:
        """Key used to tell whether two passes report the same error."""
        location = f"{self.file or '?'}:{self.line or 0}"
        return f"{location}:{self.code or self.message}"

    def format(self) -> str:
        location = ""
        if self.file:
            location = self.file
            if self.line is not None:
                location += f":{self.line}"
                if self.column is not None:
                    location += f":{self.column}"
            location += " - "
        code = f"{self.code}: " if self.code else ""
        return f"{location}{code}{self.message}"


class ErrorSnapshot(BaseModel):
    type_errors: int = 0
    module_errors: int = 0
    runtime_errors: int = 0
    lint_errors: int = 0
    captured_at: datetime = Field(default_factory=_utcnow)

    @property
    def total(self) -> int:
        return self.type_errors + self.module_errors + self.runtime_errors + self.lint_errors

    @classmethod
    def from_errors(cls, errors: Iterable[VerificationError]) -> "ErrorSnapshot":
        counts = {category: 0 for category in ErrorCategory}
        for error in errors:
            if error.severity != "error":
                continue
            counts[error.category] += 1
        return cls(
            type_errors=counts[ErrorCategory.TYPE],
            module_errors=counts[ErrorCategory.MODULE],
            runtime_errors=counts[ErrorCategory.RUNTIME],
            lint_errors=counts[ErrorCategory.LINT],
        )


class VerificationResult(BaseModel):
    success: bool
    errors: List[VerificationError] = Field(default_factory=list)
    raw_output: str = ""
    timestamp: datetime = Field(default_factory=_utcnow)

    @property
    def categorized_errors(self) -> Dict[ErrorCategory, List[VerificationError]]:
        grouped: Dict[ErrorCategory, List[VerificationError]] = {
            category: [] for category in ErrorCategory
        }
        for error in self.errors:
            grouped[error.category].append(error)
        return grouped

    @property
    def error_count(self) -> int:
        return len(self.errors)

    def snapshot(self) -> ErrorSnapshot:
        return ErrorSnapshot.from_errors(self.errors)

    @property
    def has_unparsed_failure(self) -> bool:
        return any(
            e.code == UNPARSED_FAILURE_CODE and e.severity == "error" for e in self.errors
        )

    def files_with_errors(self) -> List[str]:
        seen: List[str] = []
        for error in self.errors:
            if error.file and error.file not in seen:
                seen.append(error.file)
        return seen

    @classmethod
    def passed(cls, raw_output: str = "") -> "VerificationResult":
        return cls(success=True, errors=[], raw_output=raw_output)

    @classmethod
    def from_errors(
        cls, errors: List[VerificationError], raw_output: str = ""
    ) -> "VerificationResult":
        blocking = [e for e in errors if e.severity == "error"]
        return cls(success=not blocking, errors=errors, raw_output=raw_output)


class ErrorTrend(str, Enum):
    INCREASED = "increased"
    DECREASED = "decreased"
    UNCHANGED = "unchanged"


class ErrorComparison(BaseModel):
    """Baseline vs current error state, the sole input to auto-rollback."""

    baseline: ErrorSnapshot
    current: ErrorSnapshot
    trend: ErrorTrend
    delta: int
    summary: str
    new_errors: List[VerificationError] = Field(default_factory=list)
    fixed_errors: List[VerificationError] = Field(default_factory=list)
    # The current pass failed with output that could not be read, so its count is a floor.
    verification_broken: bool = False

    @property
    def increased(self) -> bool:
        return self.trend == ErrorTrend.INCREASED

    @property
    def decreased(self) -> bool:
        return self.trend == ErrorTrend.DECREASED
