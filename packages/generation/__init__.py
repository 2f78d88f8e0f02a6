"""AI generation collaborator: streams text and action proposals for a prompt."""

from .base import (
    BaseGenerator,
    GenerationError,
    build_prompt,
    events_from_text,
    extract_json_block,
)
from .config import GenerationConfig
from .factory import build_generator, create_generator
from .openai_compat import OpenAICompatGenerator
from .stub import StubGenerator

__all__ = [
    "BaseGenerator",
    "GenerationConfig",
    "GenerationError",
    "OpenAICompatGenerator",
    "StubGenerator",
    "build_generator",
    "build_prompt",
    "create_generator",
    "events_from_text",
    "extract_json_block",
]
