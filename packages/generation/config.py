from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import yaml

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent.parent / "configs" / "workbench.yaml"


@dataclass(frozen=True)
class GenerationConfig:
    """AI generation settings, read from configs/workbench.yaml and environment variables."""

    provider: str = "stub"
    model: str | None = None
    base_url: str | None = None
    api_key: str | None = None
    timeout_s: float = 60.0
    max_prompt_chars: int = 60000

    @classmethod
    def from_config_file(cls, config_path: str | Path | None = None) -> GenerationConfig | None:
        """Read the ``generation`` section of the YAML config; None if absent."""
        config_path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
        if not config_path.exists():
            return None

        with open(config_path, "r", encoding="utf-8") as f:
            config_data = yaml.safe_load(f) or {}

        section = config_data.get("generation")
        if not isinstance(section, dict):
            return None

        return cls(
            provider=str(section.get("provider", "stub")).lower(),
            model=section.get("model"),
            base_url=section.get("base_url"),
            api_key=section.get("api_key") or None,
            timeout_s=float(section.get("timeout_s", 60.0)),
            max_prompt_chars=int(section.get("max_prompt_chars", 60000)),
        )

    @classmethod
    def from_env(cls) -> GenerationConfig:
        return cls(
            provider=os.getenv("GENERATION_PROVIDER", "stub").lower(),
            model=os.getenv("GENERATION_MODEL"),
            base_url=os.getenv("GENERATION_BASE_URL"),
            api_key=os.getenv("GENERATION_API_KEY"),
            timeout_s=_env_float("GENERATION_TIMEOUT_S", 60.0),
            max_prompt_chars=_env_int("GENERATION_MAX_PROMPT_CHARS", 60000),
        )

    @classmethod
    def load(cls, config_path: str | Path | None = None) -> GenerationConfig:
        """Config file provides defaults; environment variables override it."""
        file_config = cls.from_config_file(config_path)
        env_config = cls.from_env()

        if os.getenv("GENERATION_PROVIDER") or file_config is None:
            return env_config

        return cls(
            provider=file_config.provider,
            model=env_config.model or file_config.model,
            base_url=env_config.base_url or file_config.base_url,
            api_key=env_config.api_key or file_config.api_key,
            timeout_s=env_config.timeout_s if os.getenv("GENERATION_TIMEOUT_S") else file_config.timeout_s,
            max_prompt_chars=(
                env_config.max_prompt_chars
                if os.getenv("GENERATION_MAX_PROMPT_CHARS")
                else file_config.max_prompt_chars
            ),
        )


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
