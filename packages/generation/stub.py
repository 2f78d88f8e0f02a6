from __future__ import annotations

from collections import deque
from typing import Any, AsyncIterator, Deque, Dict, Iterable, List, Optional, Union

from protocol import DoneEvent, GenerationEvent, TextEvent, TokenUsage

from .base import BaseGenerator, events_from_text

ScriptedReply = Union[str, List[GenerationEvent]]


class StubGenerator(BaseGenerator):
    """
    Offline generator. Replies are consumed in order; a string reply is
    parsed like a model reply, a list is streamed as-is. With no scripted
    reply left it answers "Okay." with no actions.
    """

    def __init__(self, replies: Iterable[ScriptedReply] = (), max_prompt_chars: int = 60000) -> None:
        super().__init__(max_prompt_chars=max_prompt_chars)
        self._replies: Deque[ScriptedReply] = deque(replies)
        self.prompts: List[str] = []
        self.contexts: List[Optional[Dict[str, Any]]] = []

    def add_reply(self, reply: ScriptedReply) -> None:
        self._replies.append(reply)

    @property
    def call_count(self) -> int:
        return len(self.prompts)

    async def stream(
        self, prompt: str, context: Optional[Dict[str, Any]] = None
    ) -> AsyncIterator[GenerationEvent]:
        self.prompts.append(self._trim_prompt(prompt))
        self.contexts.append(context)
        reply = self._replies.popleft() if self._replies else "Okay."

        events = events_from_text(reply) if isinstance(reply, str) else list(reply)
        done_seen = False
        for event in events:
            done_seen = done_seen or isinstance(event, DoneEvent)
            yield event
        if not done_seen:
            output_tokens = sum(len(e.text.split()) for e in events if isinstance(e, TextEvent))
            yield DoneEvent(
                model="stub",
                usage=TokenUsage(input_tokens=len(prompt.split()), output_tokens=output_tokens),
            )
