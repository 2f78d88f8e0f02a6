"""
History ledger - append-only record of executed actions.

Entries are frozen. Rolling an entry back never edits it: the ledger swaps
in a copy with ``can_rollback=False`` and appends a new compensating entry
that points at the original through ``rollback_of``.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from protocol import Action

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Backup:
    """Pre-image of one path. ``content`` None means the file did not exist."""

    path: str
    content: Optional[str]

    @property
    def existed(self) -> bool:
        return self.content is not None


@dataclass(frozen=True)
class ActionResult:
    success: bool
    output: str = ""
    error: Optional[str] = None


@dataclass(frozen=True)
class HistoryEntry:
    id: str
    action: Action
    result: ActionResult
    can_rollback: bool
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    backup: Optional[Backup] = None
    rollback_of: Optional[str] = None
    retry_of: Optional[str] = None

    @property
    def failed(self) -> bool:
        return not self.result.success

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "action": self.action.model_dump(mode="json"),
            "success": self.result.success,
            "output": self.result.output,
            "error": self.result.error,
            "can_rollback": self.can_rollback,
            "timestamp": self.timestamp.isoformat(),
            "backup_existed": self.backup.existed if self.backup else None,
            "rollback_of": self.rollback_of,
            "retry_of": self.retry_of,
        }


class HistoryLedger:
    """
    Chronological list of HistoryEntry.

    Grows until cleared unless ``limit`` is set, in which case the oldest
    entries are dropped (and with them the ability to undo them).
    """

    def __init__(self, limit: Optional[int] = None):
        if limit is not None and limit < 1:
            raise ValueError("History limit must be positive")
        self.limit = limit
        self._entries: List[HistoryEntry] = []

    def __len__(self) -> int:
        return len(self._entries)

    def record(self, entry: HistoryEntry) -> HistoryEntry:
        self._entries.append(entry)
        if self.limit is not None and len(self._entries) > self.limit:
            dropped = self._entries[: len(self._entries) - self.limit]
            self._entries = self._entries[-self.limit:]
            logger.info(f"History limit reached, dropped {len(dropped)} oldest entries")
        return entry

    def get(self, entry_id: str) -> Optional[HistoryEntry]:
        for entry in self._entries:
            if entry.id == entry_id:
                return entry
        return None

    def entries(self) -> List[HistoryEntry]:
        """Newest first."""
        return list(reversed(self._entries))

    def chronological(self) -> List[HistoryEntry]:
        return list(self._entries)

    def rollbackable(self, ids: Optional[Iterable[str]] = None) -> List[HistoryEntry]:
        """Entries that can still be undone, newest first, optionally limited to ``ids``."""
        wanted = set(ids) if ids is not None else None
        return [
            entry
            for entry in reversed(self._entries)
            if entry.can_rollback and (wanted is None or entry.id in wanted)
        ]

    def failed(self) -> List[HistoryEntry]:
        return [entry for entry in reversed(self._entries) if entry.failed]

    def mark_rolled_back(self, entry_id: str) -> HistoryEntry:
        for index, entry in enumerate(self._entries):
            if entry.id == entry_id:
                replaced = dataclasses.replace(entry, can_rollback=False)
                self._entries[index] = replaced
                return replaced
        raise KeyError(entry_id)

    def clear(self) -> int:
        count = len(self._entries)
        self._entries = []
        return count
