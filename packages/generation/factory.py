from __future__ import annotations

from pathlib import Path

from .base import BaseGenerator
from .config import GenerationConfig
from .openai_compat import OpenAICompatGenerator
from .stub import StubGenerator

DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_OPENAI_MODEL = "gpt-4o-mini"


def build_generator(config_path: str | Path | None = None) -> BaseGenerator:
    """Build the configured generator; config file first, environment overrides."""
    return create_generator(GenerationConfig.load(config_path))


def create_generator(config: GenerationConfig) -> BaseGenerator:
    provider = config.provider.lower()

    if provider == "stub":
        return StubGenerator(max_prompt_chars=config.max_prompt_chars)

    if provider in ("openai", "openai_compat"):
        if provider == "openai" and not config.api_key:
            raise ValueError("openai provider requires an api_key (GENERATION_API_KEY)")
        return OpenAICompatGenerator(
            base_url=config.base_url or DEFAULT_OPENAI_BASE_URL,
            model=config.model or DEFAULT_OPENAI_MODEL,
            api_key=config.api_key,
            timeout_s=config.timeout_s,
            max_prompt_chars=config.max_prompt_chars,
        )

    raise ValueError(f"Unknown generation provider: {config.provider}")
