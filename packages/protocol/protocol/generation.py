"""Events streamed by the AI generation collaborator."""

from __future__ import annotations

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field

from protocol.actions import Action


class TokenUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0


class TextEvent(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ActionProposalEvent(BaseModel):
    type: Literal["action"] = "action"
    action: Action


class DoneEvent(BaseModel):
    type: Literal["done"] = "done"
    usage: Optional[TokenUsage] = None
    model: Optional[str] = None


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    message: str


GenerationEvent = Annotated[
    Union[TextEvent, ActionProposalEvent, DoneEvent, ErrorEvent],
    Field(discriminator="type"),
]
