from __future__ import annotations

from typing import Any, AsyncIterator, Dict, Optional

import httpx

from protocol import DoneEvent, ErrorEvent, GenerationEvent, TokenUsage

from .base import BaseGenerator, GenerationError, build_prompt, events_from_text

SYSTEM_PROMPT = (
    "You are a code generation assistant working on a live project. "
    "When you change files or run commands, include a JSON block "
    '{"actions": [...]} where each action is one of '
    '{"type": "file", "path", "content"}, {"type": "modify", "path", "new_content"}, '
    '{"type": "delete", "path"} or {"type": "shell", "command"}.'
)


class OpenAICompatGenerator(BaseGenerator):
    """Any server exposing an OpenAI-compatible ``/chat/completions`` endpoint."""

    def __init__(
        self,
        base_url: str,
        model: str,
        api_key: str | None = None,
        timeout_s: float = 60.0,
        max_prompt_chars: int = 60000,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(max_prompt_chars=max_prompt_chars)
        if not base_url:
            raise ValueError("base_url must be set for openai_compat")
        if not model:
            raise ValueError("model must be set for openai_compat")
        self._base_url = base_url
        self._model = model
        self._api_key = api_key
        self._timeout = timeout_s
        self._transport = transport

    async def stream(
        self, prompt: str, context: Optional[Dict[str, Any]] = None
    ) -> AsyncIterator[GenerationEvent]:
        try:
            data = await self._complete(self._trim_prompt(build_prompt(prompt, context)))
        except GenerationError as exc:
            yield ErrorEvent(message=str(exc))
            return

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            yield ErrorEvent(message="LLM response missing expected content")
            return

        for event in events_from_text(content or ""):
            yield event

        usage = data.get("usage") or {}
        yield DoneEvent(
            model=data.get("model") or self._model,
            usage=TokenUsage(
                input_tokens=int(usage.get("prompt_tokens", 0) or 0),
                output_tokens=int(usage.get("completion_tokens", 0) or 0),
            ),
        )

    async def _complete(self, prompt: str) -> Dict[str, Any]:
        url = f"{self._base_url.rstrip('/')}/chat/completions"
        payload = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": 0,
        }
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(url, json=payload, headers=headers)
                response.raise_for_status()
                data: Any = response.json()
        except httpx.HTTPError as exc:
            raise GenerationError(f"LLM request failed: {exc}") from exc
        except ValueError as exc:
            raise GenerationError("LLM response was not valid JSON") from exc
        if not isinstance(data, dict):
            raise GenerationError("LLM response was not a JSON object")
        return data
