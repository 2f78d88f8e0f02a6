from typing import Dict, List, Optional

import pytest

from executor import ProcessResult


class ScriptedProcess:
    """Returns canned results per command; anything else exits 0 with no output."""

    def __init__(self, results: Optional[Dict[str, ProcessResult]] = None):
        self.results = results or {}
        self.commands: List[str] = []
        self.timeouts: List[Optional[float]] = []

    async def run(self, command, timeout=None):
        self.commands.append(command)
        self.timeouts.append(timeout)
        return self.results.get(command) or ProcessResult(command=command, output="", exit_code=0)


@pytest.fixture
def scripted_process():
    """Factory: ``scripted_process({command: ProcessResult})``."""
    return ScriptedProcess
