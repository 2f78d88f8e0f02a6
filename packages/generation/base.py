from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, List, Optional

from pydantic import ValidationError

from protocol import (
    Action,
    ActionProposalEvent,
    DoneEvent,
    ErrorEvent,
    GenerationEvent,
    TextEvent,
    TokenUsage,
    parse_action,
)

DEFAULT_MAX_PROMPT_CHARS = 60000


class GenerationError(RuntimeError):
    """Transport or shape failure talking to the AI collaborator."""


class BaseGenerator(ABC):
    def __init__(self, max_prompt_chars: int = DEFAULT_MAX_PROMPT_CHARS) -> None:
        self._max_prompt_chars = max_prompt_chars
        self.last_usage: Optional[TokenUsage] = None

    @abstractmethod
    def stream(
        self, prompt: str, context: Optional[Dict[str, Any]] = None
    ) -> AsyncIterator[GenerationEvent]:
        """
        Yields text, action-proposal, done and error events for one request.
        Output is untrusted: action proposals are shape-validated only.
        """
        raise NotImplementedError

    async def generate_text(self, prompt: str, context: Optional[Dict[str, Any]] = None) -> str:
        parts: List[str] = []
        async for event in self.stream(prompt, context):
            if isinstance(event, TextEvent):
                parts.append(event.text)
            elif isinstance(event, ErrorEvent):
                raise GenerationError(event.message)
            elif isinstance(event, DoneEvent):
                self.last_usage = event.usage
        return "".join(parts)

    async def generate_actions(
        self, prompt: str, context: Optional[Dict[str, Any]] = None
    ) -> List[Action]:
        actions: List[Action] = []
        async for event in self.stream(prompt, context):
            if isinstance(event, ActionProposalEvent):
                actions.append(event.action)
            elif isinstance(event, ErrorEvent):
                raise GenerationError(event.message)
            elif isinstance(event, DoneEvent):
                self.last_usage = event.usage
        return actions

    def _trim_prompt(self, prompt: str) -> str:
        if self._max_prompt_chars <= 0:
            return prompt
        if len(prompt) <= self._max_prompt_chars:
            return prompt
        return prompt[: self._max_prompt_chars]


def build_prompt(prompt: str, context: Optional[Dict[str, Any]] = None) -> str:
    if not context:
        return prompt
    rendered = json.dumps(context, ensure_ascii=False, indent=2, default=str)
    return f"{prompt}\n\nContext:\n{rendered}"


def extract_json_block(text: str) -> str | None:
    fence_match = re.search(r"```(?:json)?\s*(.*?)```", text, re.DOTALL)
    if fence_match:
        text = fence_match.group(1).strip()
    if text.startswith("{") and text.endswith("}"):
        return text
    json_match = re.search(r"\{.*\}", text, re.DOTALL)
    if json_match:
        return json_match.group(0)
    return None


def events_from_text(text: str) -> List[GenerationEvent]:
    """
    Split a model reply into events: the reply text, then one proposal per
    valid entry of a JSON ``{"actions": [...]}`` block. Invalid entries become
    error events rather than aborting the whole reply.
    """
    events: List[GenerationEvent] = [TextEvent(text=text)]
    candidate = extract_json_block(text)
    if candidate is None:
        return events
    try:
        payload = json.loads(candidate)
    except json.JSONDecodeError:
        return events
    if not isinstance(payload, dict) or not isinstance(payload.get("actions"), list):
        return events

    for index, raw in enumerate(payload["actions"]):
        try:
            events.append(ActionProposalEvent(action=parse_action(raw)))
        except ValidationError as exc:
            events.append(ErrorEvent(message=f"Invalid action #{index}: {exc.errors()[0]['msg']}"))
    return events
