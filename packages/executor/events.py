"""
Engine event log.

JsonlEventLog is an EngineObserver that appends every notification it
receives to a JSONL file, one event per line. Append-only; events are never
rewritten. EventReader loads and filters them back for debugging
("what happened to src/App.tsx at 10:15?").
"""

import json
import threading
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from .observer import EngineObserver


class EventType(Enum):
    """Event type enumeration."""
    ACTION_STARTED = "action_started"
    ACTION_COMPLETED = "action_completed"
    ACTION_FAILED = "action_failed"
    FILE_CHANGED = "file_changed"
    PROGRESS = "progress"
    STATE_CHANGED = "state_changed"
    APPROVAL_NEEDED = "approval_needed"
    ARTIFACT_READY = "artifact_ready"
    ORCHESTRATION_COMPLETED = "orchestration_completed"
    ORCHESTRATION_ERROR = "orchestration_error"


@dataclass
class Event:
    """
    Structured event for the engine timeline.

    All events have:
    - event_type: Category of event
    - timestamp: When it occurred (ISO8601 UTC)
    - data: Type-specific payload
    """
    event_type: str  # EventType value
    timestamp: str  # ISO8601 UTC
    data: Dict[str, Any]

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(asdict(self), separators=(',', ':'), default=str)

    @classmethod
    def from_json(cls, json_str: str) -> "Event":
        """Deserialize from JSON string."""
        return cls(**json.loads(json_str))

    @classmethod
    def create(cls, event_type: EventType, data: Dict[str, Any]) -> "Event":
        """Create event with current timestamp."""
        return cls(
            event_type=event_type.value,
            timestamp=datetime.now(timezone.utc).isoformat(),
            data=data
        )


def _action_data(action: Any) -> Dict[str, Any]:
    return {
        "id": getattr(action, "id", None),
        "type": getattr(action, "type", None),
        "target": getattr(action, "target", None),
        "status": getattr(getattr(action, "status", None), "value", None),
    }


class JsonlEventLog(EngineObserver):
    """
    Observer that writes events to a JSONL file (append-only).

    Thread-safe for concurrent writes. Terminal output is not logged; it is
    high volume and already captured in action results.
    """

    def __init__(self, events_file: Path):
        """
        Initialize event log.

        Args:
            events_file: Path to events.jsonl file
        """
        self.events_file = Path(events_file)
        self._lock = threading.Lock()
        self.events_file.parent.mkdir(parents=True, exist_ok=True)

    def write_event(self, event: Event):
        with self._lock:
            with open(self.events_file, 'a', encoding='utf-8') as f:
                f.write(event.to_json() + '\n')

    def _emit(self, event_type: EventType, data: Dict[str, Any]) -> None:
        self.write_event(Event.create(event_type, data))

    def on_action_start(self, action):
        self._emit(EventType.ACTION_STARTED, _action_data(action))

    def on_action_complete(self, action):
        self._emit(EventType.ACTION_COMPLETED, _action_data(action))

    def on_action_error(self, action, error):
        self._emit(EventType.ACTION_FAILED, {**_action_data(action), "error": error})

    def on_filesystem_change(self, path, change):
        self._emit(EventType.FILE_CHANGED, {"path": path, "change": change})

    def on_progress(self, message):
        self._emit(EventType.PROGRESS, {"message": message})

    def on_state_change(self, from_state, to_state, context):
        self._emit(EventType.STATE_CHANGED, {"from": from_state, "to": to_state})

    def on_approval_needed(self, approval_type):
        self._emit(EventType.APPROVAL_NEEDED, {"approval_type": approval_type})

    def on_research_complete(self, session_id):
        self._emit(EventType.ARTIFACT_READY, {"kind": "research", "id": session_id})

    def on_prd_ready(self, prd_id):
        self._emit(EventType.ARTIFACT_READY, {"kind": "prd", "id": prd_id})

    def on_architecture_ready(self, architecture_id):
        self._emit(EventType.ARTIFACT_READY, {"kind": "architecture", "id": architecture_id})

    def on_complete(self, context):
        self._emit(EventType.ORCHESTRATION_COMPLETED, {})

    def on_error(self, message):
        self._emit(EventType.ORCHESTRATION_ERROR, {"message": message})


class EventReader:
    """Reads and filters events from a JSONL file."""

    def __init__(self, events_file: Path):
        self.events_file = Path(events_file)

    def read_all_events(self) -> List[Event]:
        """
        Read all events from file.

        Returns:
            List of events in chronological order
        """
        if not self.events_file.exists():
            return []

        events = []
        with open(self.events_file, 'r', encoding='utf-8') as f:
            for line in f:
                line = line.strip()
                if line:
                    try:
                        events.append(Event.from_json(line))
                    except json.JSONDecodeError:
                        # Skip malformed lines
                        continue

        return events

    def filter_events(
        self,
        event_type: Optional[EventType] = None,
        since: Optional[str] = None,
        until: Optional[str] = None
    ) -> List[Event]:
        """
        Filter events by type and time range.

        Args:
            event_type: Filter by event type (None = all types)
            since: ISO timestamp - only events after this time
            until: ISO timestamp - only events before this time
        """
        filtered = []
        for event in self.read_all_events():
            if event_type and event.event_type != event_type.value:
                continue
            if since and event.timestamp < since:
                continue
            if until and event.timestamp > until:
                continue
            filtered.append(event)
        return filtered

    def summarize(self, event: Event) -> str:
        """Create human-readable summary of event."""
        data = event.data
        if event.event_type == EventType.FILE_CHANGED.value:
            return f"{data.get('change', 'changed')} {data.get('path', 'unknown')}"
        if event.event_type == EventType.ACTION_FAILED.value:
            return f"Action failed: {data.get('target', 'unknown')} ({data.get('error', '')})"
        if event.event_type == EventType.STATE_CHANGED.value:
            return f"{data.get('from')} -> {data.get('to')}"
        return event.event_type
