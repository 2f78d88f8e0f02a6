from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, FrozenSet, Optional

import yaml

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent.parent / "configs" / "workbench.yaml"

APPROVAL_TYPES = ("research", "prd", "architecture", "phase", "fix")


@dataclass(frozen=True)
class ApprovalGates:
    """Which orchestration phases stop in awaiting-approval once they finish."""

    research: bool = False
    prd: bool = False
    architecture: bool = True
    phase: bool = False

    def enabled(self, kind: str) -> bool:
        return bool(getattr(self, kind, False))


@dataclass(frozen=True)
class EngineConfig:
    """Engine settings, read from configs/workbench.yaml and environment variables."""

    max_iterations: int = 3
    max_checkpoints: int = 10
    history_limit: Optional[int] = None
    per_file_verification: bool = False
    verification_timeout_s: float = 60.0
    stop_on_error: bool = False
    approval_gates: ApprovalGates = field(default_factory=ApprovalGates)
    auto_approve: FrozenSet[str] = frozenset()

    def __post_init__(self) -> None:
        if self.max_iterations < 0:
            raise ValueError("max_iterations must be >= 0")
        if self.max_checkpoints < 1:
            raise ValueError("max_checkpoints must be >= 1")
        unknown = set(self.auto_approve) - set(APPROVAL_TYPES)
        if unknown:
            raise ValueError(f"Unknown approval type(s) in auto_approve: {sorted(unknown)}")

    @classmethod
    def from_config_file(cls, config_path: str | Path | None = None) -> EngineConfig | None:
        """Read the ``engine`` section of the YAML config; None if absent."""
        config_path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
        if not config_path.exists():
            return None

        with open(config_path, "r", encoding="utf-8") as f:
            config_data = yaml.safe_load(f) or {}

        section = config_data.get("engine")
        if not isinstance(section, dict):
            return None
        return cls.from_dict(section)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> EngineConfig:
        defaults = cls()
        gates = data.get("approval_gates") or {}
        history_limit = data.get("history_limit", defaults.history_limit)
        return cls(
            max_iterations=int(data.get("max_iterations", defaults.max_iterations)),
            max_checkpoints=int(data.get("max_checkpoints", defaults.max_checkpoints)),
            history_limit=int(history_limit) if history_limit is not None else None,
            per_file_verification=bool(data.get("per_file_verification", False)),
            verification_timeout_s=float(
                data.get("verification_timeout_s", defaults.verification_timeout_s)
            ),
            stop_on_error=bool(data.get("stop_on_error", False)),
            approval_gates=ApprovalGates(
                research=bool(gates.get("research", False)),
                prd=bool(gates.get("prd", False)),
                architecture=bool(gates.get("architecture", True)),
                phase=bool(gates.get("phase", False)),
            ),
            auto_approve=frozenset(data.get("auto_approve") or ()),
        )

    @classmethod
    def from_env(cls, base: EngineConfig | None = None) -> EngineConfig:
        """Environment variables layered over ``base`` (defaults when None)."""
        base = base or cls()
        gates = base.approval_gates
        history_limit = base.history_limit
        if os.getenv("WORKBENCH_HISTORY_LIMIT"):
            # 0 lifts the cap
            history_limit = _env_int("WORKBENCH_HISTORY_LIMIT", 0) or None
        auto = os.getenv("WORKBENCH_AUTO_APPROVE")
        return replace(
            base,
            max_iterations=_env_int("WORKBENCH_MAX_ITERATIONS", base.max_iterations),
            max_checkpoints=_env_int("WORKBENCH_MAX_CHECKPOINTS", base.max_checkpoints),
            history_limit=history_limit,
            per_file_verification=_env_bool(
                "WORKBENCH_PER_FILE_VERIFICATION", base.per_file_verification
            ),
            verification_timeout_s=_env_float(
                "WORKBENCH_VERIFY_TIMEOUT_S", base.verification_timeout_s
            ),
            stop_on_error=_env_bool("WORKBENCH_STOP_ON_ERROR", base.stop_on_error),
            approval_gates=ApprovalGates(
                research=_env_bool("WORKBENCH_GATE_RESEARCH", gates.research),
                prd=_env_bool("WORKBENCH_GATE_PRD", gates.prd),
                architecture=_env_bool("WORKBENCH_GATE_ARCHITECTURE", gates.architecture),
                phase=_env_bool("WORKBENCH_GATE_PHASE", gates.phase),
            ),
            auto_approve=(
                frozenset(p.strip() for p in auto.split(",") if p.strip())
                if auto is not None
                else base.auto_approve
            ),
        )

    @classmethod
    def load(cls, config_path: str | Path | None = None) -> EngineConfig:
        """Config file provides defaults; environment variables override it."""
        return cls.from_env(cls.from_config_file(config_path))


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")
