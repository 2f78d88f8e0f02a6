"""
PerFileVerifier - narrow check of one file after it is written.

Used only by the Action Queue's per-file verification mode during fix
operations. Only critical errors (unresolved names, modules, members,
syntax) qualify for an automatic revert unless ``rollback_on_any_error``
is set. If verification itself errors, the file is left alone.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, List, Optional

from protocol import ErrorCategory, VerificationError

from .verifier import Verifier

logger = logging.getLogger(__name__)

CRITICAL_ERROR_CODES: FrozenSet[str] = frozenset({
    "TS2304",  # Cannot find name
    "TS2307",  # Cannot find module
    "TS2339",  # Property does not exist on type
    "TS2345",  # Argument type mismatch
    "TS2322",  # Type not assignable
    "TS1005",  # Expected token
    "TS1128",  # Declaration or statement expected
    "TS1109",  # Expression expected
})


@dataclass
class FileVerificationResult:
    path: str
    errors: List[VerificationError] = field(default_factory=list)
    should_rollback: bool = False
    reason: str = ""
    verification_error: Optional[str] = None

    @property
    def passed(self) -> bool:
        return not self.errors and self.verification_error is None


class PerFileVerifier:
    def __init__(
        self,
        verifier: Verifier,
        rollback_on_any_error: bool = False,
        critical_codes: Iterable[str] = CRITICAL_ERROR_CODES,
    ):
        self.verifier = verifier
        self.rollback_on_any_error = rollback_on_any_error
        self.critical_codes = frozenset(critical_codes)

    def is_critical(self, error: VerificationError) -> bool:
        if error.severity != "error":
            return False
        if error.category == ErrorCategory.MODULE:
            return True
        return error.code in self.critical_codes

    async def verify_file(self, path: str) -> FileVerificationResult:
        try:
            result = await self.verifier.verify([path])
        except Exception as exc:
            logger.warning(f"Per-file verification of {path} errored, keeping change: {exc}")
            return FileVerificationResult(path=path, verification_error=str(exc))

        errors = [e for e in result.errors if e.severity == "error"]
        if not errors:
            return FileVerificationResult(path=path)

        qualifying = errors if self.rollback_on_any_error else [e for e in errors if self.is_critical(e)]
        if not qualifying:
            return FileVerificationResult(
                path=path, errors=errors, reason=f"{len(errors)} non-critical error(s)"
            )

        first = qualifying[0]
        reason = f"{len(qualifying)} critical error(s) in {path}: {first.format()}"
        return FileVerificationResult(
            path=path, errors=errors, should_rollback=True, reason=reason
        )
