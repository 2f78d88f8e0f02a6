"""
Shared doubles for planner tests.

- SequenceVerifier: canned verification results in order, last one repeats
- MarkerVerifier: one type error per "ERR" line in the project files
- InstallProcess: records commands, fails the ones it is told to
"""

from typing import Dict, List, Optional

import pytest

from executor import ProcessResult
from protocol import ErrorCategory, VerificationError, VerificationResult


class SequenceVerifier:
    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0

    async def verify(self, files=None):
        self.calls += 1
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]


class MarkerVerifier:
    def __init__(self, filesystem):
        self.filesystem = filesystem

    async def verify(self, files=None):
        errors = []
        for path in await self.filesystem.list(""):
            content = await self.filesystem.read(path) or ""
            for number, line in enumerate(content.splitlines(), start=1):
                if line.strip() == "ERR":
                    errors.append(
                        VerificationError(
                            category=ErrorCategory.TYPE, message="marker", file=path, line=number
                        )
                    )
        return VerificationResult.from_errors(errors)


class InstallProcess:
    def __init__(self, failing: Optional[Dict[str, str]] = None):
        self.failing = failing or {}
        self.commands: List[str] = []

    async def run(self, command, timeout=None):
        self.commands.append(command)
        if command in self.failing:
            return ProcessResult(command=command, output=self.failing[command], exit_code=1)
        return ProcessResult(command=command, output="added 1 package\n", exit_code=0)


def type_errors(count, file="src/App.tsx"):
    return VerificationResult.from_errors(
        [
            VerificationError(
                category=ErrorCategory.TYPE, message=f"error {n}", file=file, line=n, code="TS2322"
            )
            for n in range(1, count + 1)
        ]
    )


@pytest.fixture
def sequence_verifier():
    """Factory: ``sequence_verifier(result, result, ...)``."""
    return SequenceVerifier


@pytest.fixture
def marker_verifier():
    return MarkerVerifier


@pytest.fixture
def install_process():
    return InstallProcess


@pytest.fixture
def failing_result():
    """Factory: ``failing_result(count, file=...)`` with that many type errors."""
    return type_errors
