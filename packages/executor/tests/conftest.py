"""
Shared doubles for executor tests.

- RecordingObserver: keeps every notification as (hook, args)
- FakeProcess: scripted command results, records what ran
"""

from typing import Dict, List, Optional, Tuple

import pytest

from executor import EngineObserver, MemoryFileSystem, ProcessResult


class RecordingObserver(EngineObserver):
    def __init__(self):
        self.calls: List[Tuple[str, tuple]] = []

    def _record(self, hook, *args):
        self.calls.append((hook, args))

    def on_action_start(self, action):
        self._record("action_start", action.id)

    def on_action_complete(self, action):
        self._record("action_complete", action.id)

    def on_action_error(self, action, error):
        self._record("action_error", action.id, error)

    def on_filesystem_change(self, path, change):
        self._record("filesystem_change", path, change)

    def on_terminal_output(self, text):
        self._record("terminal_output", text)

    def on_progress(self, message):
        self._record("progress", message)

    def hooks(self, name):
        return [args for hook, args in self.calls if hook == name]


class FakeProcess:
    def __init__(self, results: Optional[Dict[str, ProcessResult]] = None):
        self.results = results or {}
        self.commands: List[str] = []

    async def run(self, command, timeout=None):
        self.commands.append(command)
        return self.results.get(command) or ProcessResult(command=command, output="ok\n", exit_code=0)


@pytest.fixture
def observer():
    return RecordingObserver()


@pytest.fixture
def process():
    return FakeProcess()


@pytest.fixture
def memfs():
    return MemoryFileSystem({"src/App.tsx": "export const App = 1;\n"})


@pytest.fixture
def fake_process():
    """Factory: ``fake_process({command: ProcessResult})``."""
    return FakeProcess
