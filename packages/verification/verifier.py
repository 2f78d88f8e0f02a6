"""
Verification collaborator.

A Verifier takes a file set (or the whole project when ``files`` is None)
and returns a VerificationResult with categorized errors. CommandVerifier
is the concrete one: it runs a verification plan (commands separated by
``;`` or newlines) through the process collaborator and parses the output.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, List, Optional, Protocol

from executor.process import ProcessResult, ProcessRunner
from protocol import UNPARSED_FAILURE_CODE, ErrorCategory, VerificationError, VerificationResult

from .parser import ErrorOutputParser

logger = logging.getLogger(__name__)

DEFAULT_VERIFICATION_PLAN = "npx tsc --noEmit --pretty false"
DEFAULT_VERIFY_TIMEOUT_S = 60.0


class Verifier(Protocol):
    async def verify(self, files: Optional[List[str]] = None) -> VerificationResult:
        if not self.commands:
            return VerificationResult.passed("No verification plan specified")

        errors: List[VerificationError] = []
        unparsed: List[VerificationError] = []
        outputs: List[str] = []

        for command in self.commands:
            result = await self.process.run(command, timeout=self.timeout_s)
            if result.timed_out:
                logger.warning(f"Verification step skipped (timed out): {command}")
                outputs.append(f"$ {command}\n[skipped: timed out after {self.timeout_s:g}s]")
                continue
            outputs.append(f"$ {command}\n{result.output}")
            step_errors = self.parser.parse(result.output)
            errors.extend(step_errors)
            if result.exit_code != 0 and not any(e.severity == "error" for e in step_errors):
                logger.warning(f"Verification step failed with unparseable output: {command}")
                unparsed.append(_exit_error(command, result))

        if files is not None:
            errors = scope_errors(errors, files)
        # A failed step with nothing parseable still counts, even when scoped.
        errors.extend(unparsed)

        return VerificationResult.from_errors(errors, raw_output="\n".join(outputs))


def _exit_error(command: str, result: ProcessResult) -> VerificationError:
    lowered = command.lower()
    if "lint" in lowered:
        category = ErrorCategory.LINT
    elif "test" in lowered:
        category = ErrorCategory.RUNTIME
    else:
        category = ErrorCategory.TYPE
    return VerificationError(
        category=category,
        code=UNPARSED_FAILURE_CODE,
        message=f"`{command}` exited with code {result.exit_code}: {result.tail(3)}".strip(),
    )
