"""API settings from environment variables."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass(frozen=True)
class ApiSettings:
    app_name: str = "Workbench Engine API"
    project_root: Path = field(default_factory=Path.cwd)
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 5174
    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:5173"])

    @classmethod
    def from_env(cls) -> ApiSettings:
        root = os.getenv("WORKBENCH_PROJECT_ROOT")
        return cls(
            project_root=Path(root).resolve() if root else Path.cwd(),
            log_level=os.getenv("WORKBENCH_LOG_LEVEL", "INFO").upper(),
            host=os.getenv("WORKBENCH_HOST", "127.0.0.1"),
            port=int(os.getenv("WORKBENCH_PORT", "5174")),
            cors_origins=_env_list("WORKBENCH_CORS_ORIGINS", ["http://localhost:5173"]),
        )
