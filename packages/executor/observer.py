"""
Observer interface - the engine's only push channel to the outside.

Every hook is a no-op by default, so an observer overrides only what it
needs. Observers are injected once and may be swapped in place on the
engine; they must not raise.
"""

from __future__ import annotations

from typing import Any, Iterable, List


class EngineObserver:
    # Action queue
    def on_action_start(self, action: Any) -> None:
        pass

    def on_action_complete(self, action: Any) -> None:
        pass

    def on_action_error(self, action: Any, error: str) -> None:
        pass

    def on_filesystem_change(self, path: str, change: str) -> None:
        pass

    def on_terminal_output(self, text: str) -> None:
        pass

    def on_progress(self, message: str) -> None:
        pass

    # Orchestration
    def on_state_change(self, from_state: str, to_state: str, context: Any) -> None:
        pass

    def on_approval_needed(self, approval_type: str) -> None:
        pass

    def on_research_complete(self, session_id: str) -> None:
        pass

    def on_prd_ready(self, prd_id: str) -> None:
        pass

    def on_architecture_ready(self, architecture_id: str) -> None:
        pass

    def on_complete(self, context: Any) -> None:
        pass

    def on_error(self, message: str) -> None:
        pass


class ObserverGroup(EngineObserver):
    """Fans every hook out to several observers, in registration order."""

    def __init__(self, observers: Iterable[EngineObserver] = ()) -> None:
        self._observers: List[EngineObserver] = list(observers)

    def add(self, observer: EngineObserver) -> None:
        self._observers.append(observer)

    def remove(self, observer: EngineObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def _fan_out(self, hook: str, *args: Any) -> None:
        for observer in self._observers:
            getattr(observer, hook)(*args)

    def on_action_start(self, action):
        self._fan_out("on_action_start", action)

    def on_action_complete(self, action):
        self._fan_out("on_action_complete", action)

    def on_action_error(self, action, error):
        self._fan_out("on_action_error", action, error)

    def on_filesystem_change(self, path, change):
        self._fan_out("on_filesystem_change", path, change)

    def on_terminal_output(self, text):
        self._fan_out("on_terminal_output", text)

    def on_progress(self, message):
        self._fan_out("on_progress", message)

    def on_state_change(self, from_state, to_state, context):
        self._fan_out("on_state_change", from_state, to_state, context)

    def on_approval_needed(self, approval_type):
        self._fan_out("on_approval_needed", approval_type)

    def on_research_complete(self, session_id):
        self._fan_out("on_research_complete", session_id)

    def on_prd_ready(self, prd_id):
        self._fan_out("on_prd_ready", prd_id)

    def on_architecture_ready(self, architecture_id):
        self._fan_out("on_architecture_ready", architecture_id)

    def on_complete(self, context):
        self._fan_out("on_complete", context)

    def on_error(self, message):
        self._fan_out("on_error", message)
