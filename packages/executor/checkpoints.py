"""
Checkpoint Store - named, capped snapshots of file sets.

Checkpoints live in memory for the session in a ring buffer; the oldest is
evicted when capacity is exceeded.

Restore is best-effort, not transactional: files are rewritten in capture
order and the first failed write stops the restore, leaving earlier files
restored and later ones untouched. ``RestoreResult.complete`` reports it.
"""

from __future__ import annotations

import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Deque, Dict, Iterable, List, Optional

from .filesystem import FileSystem, normalize_path
from .observer import EngineObserver

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHECKPOINTS = 10


def generate_checkpoint_id() -> str:
    return f"cp_{uuid.uuid4().hex[:10]}"


@dataclass(frozen=True)
class Checkpoint:
    id: str
    name: str
    # path -> content, None when the file was absent at capture time
    file_snapshots: Dict[str, Optional[str]]
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    description: str = ""

    @property
    def files(self) -> List[str]:
        return list(self.file_snapshots)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created_at": self.created_at.isoformat(),
            "files": [
                {"path": path, "existed": content is not None}
                for path, content in self.file_snapshots.items()
            ],
        }


@dataclass
class RestoreResult:
    checkpoint_id: str
    files_restored: List[str] = field(default_factory=list)
    files_deleted: List[str] = field(default_factory=list)
    failures: List[Dict[str, str]] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failures

    def to_dict(self) -> dict:
        return {
            "checkpoint_id": self.checkpoint_id,
            "files_restored": self.files_restored,
            "files_deleted": self.files_deleted,
            "failures": self.failures,
            "complete": self.complete,
        }


class CheckpointStore:
    def __init__(
        self,
        filesystem: FileSystem,
        max_checkpoints: int = DEFAULT_MAX_CHECKPOINTS,
        observer: Optional[EngineObserver] = None,
    ):
        if max_checkpoints < 1:
            raise ValueError("max_checkpoints must be at least 1")
        self.filesystem = filesystem
        self.observer = observer or EngineObserver()
        self._checkpoints: Deque[Checkpoint] = deque(maxlen=max_checkpoints)

    @property
    def max_checkpoints(self) -> int:
        return self._checkpoints.maxlen

    def resize(self, max_checkpoints: int) -> None:
        """Change capacity in place, evicting the oldest if needed."""
        if max_checkpoints < 1:
            raise ValueError("max_checkpoints must be at least 1")
        self._checkpoints = deque(self._checkpoints, maxlen=max_checkpoints)

    async def create_checkpoint(
        self, name: str, files: Iterable[str], description: str = ""
    ) -> Checkpoint:
        snapshots: Dict[str, Optional[str]] = {}
        for path in files:
            normalized = normalize_path(path)
            if normalized in snapshots:
                continue
            snapshots[normalized] = await self.filesystem.read(normalized)

        checkpoint = Checkpoint(
            id=generate_checkpoint_id(),
            name=name,
            file_snapshots=snapshots,
            description=description,
        )
        if len(self._checkpoints) == self._checkpoints.maxlen:
            evicted = self._checkpoints[0]
            logger.info(f"Evicting oldest checkpoint {evicted.id} ({evicted.name})")
        self._checkpoints.append(checkpoint)
        logger.info(f"Created checkpoint {checkpoint.id} '{name}' with {len(snapshots)} file(s)")
        self.observer.on_progress(f"Checkpoint created: {name}")
        return checkpoint

    async def auto_checkpoint(self, files: Iterable[str], reason: str) -> Checkpoint:
        return await self.create_checkpoint(f"auto: {reason}", files, description=reason)

    def get(self, checkpoint_id: str) -> Optional[Checkpoint]:
        for checkpoint in self._checkpoints:
            if checkpoint.id == checkpoint_id:
                return checkpoint
        return None

    def find_by_name(self, name: str) -> Optional[Checkpoint]:
        """Most recent checkpoint with this name."""
        for checkpoint in reversed(self._checkpoints):
            if checkpoint.name == name:
                return checkpoint
        return None

    def latest(self) -> Optional[Checkpoint]:
        return self._checkpoints[-1] if self._checkpoints else None

    def list(self) -> List[Checkpoint]:
        """Newest first."""
        return list(reversed(self._checkpoints))

    def delete(self, checkpoint_id: str) -> bool:
        checkpoint = self.get(checkpoint_id)
        if checkpoint is None:
            return False
        self._checkpoints.remove(checkpoint)
        return True

    def clear(self) -> int:
        count = len(self._checkpoints)
        self._checkpoints.clear()
        return count

    async def restore_checkpoint(self, ref: str) -> RestoreResult:
        """
        Restore by checkpoint id, falling back to the most recent checkpoint
        with that name.

        Raises:
            KeyError: If no checkpoint matches
        """
        checkpoint = self.get(ref) or self.find_by_name(ref)
        if checkpoint is None:
            raise KeyError(f"Checkpoint not found: {ref}")
        return await self._restore(checkpoint)

    async def restore_by_name(self, name: str) -> RestoreResult:
        checkpoint = self.find_by_name(name)
        if checkpoint is None:
            raise KeyError(f"Checkpoint not found: {name}")
        return await self._restore(checkpoint)

    async def restore_latest(self) -> RestoreResult:
        checkpoint = self.latest()
        if checkpoint is None:
            raise KeyError("No checkpoints available")
        return await self._restore(checkpoint)

    async def _restore(self, checkpoint: Checkpoint) -> RestoreResult:
        result = RestoreResult(checkpoint_id=checkpoint.id)
        for path, content in checkpoint.file_snapshots.items():
            try:
                if content is None:
                    await self.filesystem.delete(path)
                    result.files_deleted.append(path)
                    self.observer.on_filesystem_change(path, "deleted")
                else:
                    await self.filesystem.write(path, content)
                    result.files_restored.append(path)
                    self.observer.on_filesystem_change(path, "restored")
            except Exception as exc:
                result.failures.append({"path": path, "error": str(exc)})
                logger.error(
                    f"Restore of checkpoint {checkpoint.id} stopped at {path}: {exc}"
                )
                break

        logger.info(
            f"Restored checkpoint {checkpoint.id} '{checkpoint.name}': "
            f"{len(result.files_restored)} restored, {len(result.files_deleted)} deleted, "
            f"{len(result.failures)} failed"
        )
        self.observer.on_progress(f"Checkpoint restored: {checkpoint.name}")
        return result

    def format_checkpoints(self) -> str:
        if not self._checkpoints:
            return "No checkpoints"
        lines = []
        for index, checkpoint in enumerate(self.list(), start=1):
            stamp = checkpoint.created_at.strftime("%H:%M:%S")
            lines.append(
                f"{index}. {checkpoint.name} ({len(checkpoint.file_snapshots)} files, {stamp}) [{checkpoint.id}]"
            )
        return "\n".join(lines)
