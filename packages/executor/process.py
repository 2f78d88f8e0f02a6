"""
Process collaborator - runs shell commands for shell Actions and for the
build/lint/test verification layers.
"""

from __future__ import annotations

import asyncio
import logging
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT_S = 300.0


@dataclass
class ProcessResult:
    """Outcome of one command. ``timed_out`` results carry exit_code -1."""

    command: str
    output: str
    exit_code: int
    timed_out: bool = False
    duration_s: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    def tail(self, lines: int = 20) -> str:
        return "\n".join(self.output.splitlines()[-lines:])


class ProcessRunner(Protocol):
    async def run(self, command: str, timeout: Optional[float] = None) -> ProcessResult:
        ...


class SubprocessRunner:
    """Runs commands with ``subprocess.run`` in the project directory."""

    def __init__(self, cwd: Path, default_timeout: float = DEFAULT_COMMAND_TIMEOUT_S):
        self.cwd = Path(cwd)
        self.default_timeout = default_timeout

    async def run(self, command: str, timeout: Optional[float] = None) -> ProcessResult:
        return await asyncio.to_thread(self._run_sync, command, timeout or self.default_timeout)

    def _run_sync(self, command: str, timeout: float) -> ProcessResult:
        started = time.monotonic()
        try:
            result = subprocess.run(
                command,
                shell=True,
                cwd=self.cwd,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as exc:
            logger.warning(f"Command timed out after {timeout:g}s: {command}")
            partial = exc.stdout or ""
            if isinstance(partial, bytes):
                partial = partial.decode("utf-8", errors="replace")
            return ProcessResult(
                command=command,
                output=partial,
                exit_code=-1,
                timed_out=True,
                duration_s=time.monotonic() - started,
            )

        return ProcessResult(
            command=command,
            output=(result.stdout or "") + (result.stderr or ""),
            exit_code=result.returncode,
            duration_s=time.monotonic() - started,
        )
