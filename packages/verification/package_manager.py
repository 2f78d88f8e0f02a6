"""
Package manager detection.

Picks the command prefix for package scripts and one-off tools. Detection
order: lock file, then the manifest's ``packageManager`` field (only when it
agrees with the lock file or no lock file exists), then a pnpm workspace
file. Defaults to npm.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence

from executor.filesystem import FileSystem

logger = logging.getLogger(__name__)


class PackageManager(str, Enum):
    NPM = "npm"
    YARN = "yarn"
    PNPM = "pnpm"
    BUN = "bun"


# Text lock files only; bun's binary bun.lockb is not readable through FileSystem.
LOCK_FILES = (
    (PackageManager.NPM, ("package-lock.json", "npm-shrinkwrap.json")),
    (PackageManager.YARN, ("yarn.lock",)),
    (PackageManager.PNPM, ("pnpm-lock.yaml",)),
    (PackageManager.BUN, ("bun.lock",)),
)

PACKAGE_MANAGER_FIELD = re.compile(r"^(npm|yarn|pnpm|bun)@?([\d.]*)")


@dataclass
class PackageManagerInfo:
    manager: PackageManager = PackageManager.NPM
    lock_file: Optional[str] = None
    version: Optional[str] = None
    uses_workspaces: bool = False

    def run(self, script: str) -> str:
        """``npm run build`` / ``yarn build`` / ``pnpm run build`` / ``bun run build``."""
        if self.manager == PackageManager.YARN:
            return f"yarn {script}"
        return f"{self.manager.value} run {script}"

    def exec(self, package: str, args: Sequence[str] = ()) -> str:
        """``npx eslint .`` / ``yarn dlx eslint .`` / ``pnpm dlx eslint .`` / ``bunx eslint .``."""
        prefix = {
            PackageManager.NPM: "npx",
            PackageManager.YARN: "yarn dlx",
            PackageManager.PNPM: "pnpm dlx",
            PackageManager.BUN: "bunx",
        }[self.manager]
        parts: List[str] = [prefix, package, *args]
        return " ".join(parts)


async def detect_package_manager(
    filesystem: FileSystem, manifest: Optional[dict] = None, manifest_file: str = "package.json"
) -> PackageManagerInfo:
    """
    Detect the project's package manager.

    Args:
        filesystem: Project files
        manifest: Already parsed manifest; read from ``manifest_file`` when None
        manifest_file: Manifest path
    """
    info = PackageManagerInfo()

    for manager, files in LOCK_FILES:
        for name in files:
            if await filesystem.read(name) is not None:
                info.manager = manager
                info.lock_file = name
                break
        if info.lock_file:
            break

    if manifest is None:
        manifest = await _read_manifest(filesystem, manifest_file)
    if manifest:
        field_value = manifest.get("packageManager")
        match = PACKAGE_MANAGER_FIELD.match(field_value) if isinstance(field_value, str) else None
        if match:
            declared = PackageManager(match.group(1))
            if info.lock_file is None or declared == info.manager:
                info.manager = declared
                info.version = match.group(2) or None
        if manifest.get("workspaces"):
            info.uses_workspaces = True

    if await filesystem.read("pnpm-workspace.yaml") is not None:
        info.manager = PackageManager.PNPM
        info.uses_workspaces = True

    logger.info(
        f"Package manager: {info.manager.value}"
        + (f" (lock file: {info.lock_file})" if info.lock_file else "")
    )
    return info


async def _read_manifest(filesystem: FileSystem, manifest_file: str) -> Optional[dict]:
    content = await filesystem.read(manifest_file)
    if content is None:
        return None
    try:
        manifest = json.loads(content)
    except json.JSONDecodeError:
        return None
    return manifest if isinstance(manifest, dict) else None
