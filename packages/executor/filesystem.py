"""
Filesystem collaborator.

The engine only needs four operations: read, write, delete, list. A read of
a missing file returns None ("did not exist"), which is exactly what a
backup records.

Implementations:
- LocalFileSystem: a real directory, workspace-bounded, atomic writes
- MemoryFileSystem: dict-backed, for sandboxes without disk and for tests
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import tempfile
from pathlib import Path, PurePosixPath
from typing import Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)


class FileSystem(Protocol):
    async def read(self, path: str) -> Optional[str]:
        ...

    async def write(self, path: str, content: str) -> None:
        ...

    async def delete(self, path: str) -> None:
        ...

    async def list(self, path: str = "") -> List[str]:
        ...


def normalize_path(path: str) -> str:
    """
    Normalize a project-relative path to POSIX form.

    Raises:
        ValueError: If the path is absolute or escapes the project root
    """
    raw = path.replace("\\", "/").strip()
    if not raw or raw.startswith("/") or (len(raw) > 1 and raw[1] == ":"):
        raise ValueError(f"Path must be project-relative: {path!r}")
    parts: List[str] = []
    for part in PurePosixPath(raw).parts:
        if part in ("", "."):
            continue
        if part == "..":
            if not parts:
                raise ValueError(f"Path escapes project root: {path!r}")
            parts.pop()
            continue
        parts.append(part)
    if not parts:
        raise ValueError(f"Path must name a file: {path!r}")
    return "/".join(parts)


class LocalFileSystem:
    """Project directory on disk. Paths are relative to ``workspace_root``."""

    def __init__(self, workspace_root: Path):
        """
        Initialize local filesystem.

        Args:
            workspace_root: Root directory for all file operations
        """
        self.workspace_root = Path(workspace_root).resolve()

    def _resolve(self, path: str) -> Path:
        target = (self.workspace_root / normalize_path(path)).resolve()
        if not target.is_relative_to(self.workspace_root):
            raise ValueError(f"Path resolves outside workspace: {path!r}")
        return target

    async def read(self, path: str) -> Optional[str]:
        return await asyncio.to_thread(self._read_sync, path)

    async def write(self, path: str, content: str) -> None:
        await asyncio.to_thread(self._write_sync, path, content)

    async def delete(self, path: str) -> None:
        await asyncio.to_thread(self._delete_sync, path)

    async def list(self, path: str = "") -> List[str]:
        return await asyncio.to_thread(self._list_sync, path)

    def _read_sync(self, path: str) -> Optional[str]:
        file_path = self._resolve(path)
        if not file_path.is_file():
            return None
        # newline="" keeps CRLF so backups restore byte-identical
        with open(file_path, "r", encoding="utf-8", newline="") as f:
            return f.read()

    def _write_sync(self, path: str, content: str) -> None:
        file_path = self._resolve(path)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        original_mode = file_path.stat().st_mode if file_path.exists() else None

        # Write atomically using temp file
        temp_fd, temp_path = tempfile.mkstemp(dir=file_path.parent, suffix=".tmp")
        try:
            with open(temp_fd, "w", encoding="utf-8", newline="") as f:
                f.write(content)
            shutil.move(temp_path, file_path)
        except OSError:
            Path(temp_path).unlink(missing_ok=True)
            raise

        if original_mode is not None:
            os.chmod(file_path, original_mode)

    def _delete_sync(self, path: str) -> None:
        file_path = self._resolve(path)
        if file_path.is_file():
            file_path.unlink()

    def _list_sync(self, path: str) -> List[str]:
        base = self.workspace_root if not path else self._resolve(path)
        if not base.is_dir():
            return []
        entries = []
        for child in sorted(base.rglob("*")):
            if child.is_file():
                entries.append(child.relative_to(self.workspace_root).as_posix())
        return entries


class MemoryFileSystem:
    """In-memory project files keyed by normalized path."""

    def __init__(self, files: Optional[Dict[str, str]] = None):
        self.files: Dict[str, str] = {
            normalize_path(path): content for path, content in (files or {}).items()
        }

    async def read(self, path: str) -> Optional[str]:
        return self.files.get(normalize_path(path))

    async def write(self, path: str, content: str) -> None:
        self.files[normalize_path(path)] = content

    async def delete(self, path: str) -> None:
        self.files.pop(normalize_path(path), None)

    async def list(self, path: str = "") -> List[str]:
        if not path:
            return sorted(self.files)
        prefix = normalize_path(path) + "/"
        return sorted(p for p in self.files if p.startswith(prefix))
