"""
Action models - the unit of work applied to a project.

An Action is a tagged union over four variants. Every variant carries the
same small status sub-state machine:

    pending -> executing -> success
                         -> error
    pending -> error            (cancelled before it started)

Actions arrive from the AI collaborator as untrusted JSON, so the union is
a pydantic discriminated union keyed on ``type``; ``parse_action`` validates
shape only.
"""

from __future__ import annotations

import uuid
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Set, Union

from pydantic import BaseModel, Field, TypeAdapter


class ActionStatus(str, Enum):
    PENDING = "pending"
    EXECUTING = "executing"
    SUCCESS = "success"
    ERROR = "error"


STATUS_TRANSITIONS: Dict[ActionStatus, Set[ActionStatus]] = {
    ActionStatus.PENDING: {ActionStatus.EXECUTING, ActionStatus.ERROR},
    ActionStatus.EXECUTING: {ActionStatus.SUCCESS, ActionStatus.ERROR},
    ActionStatus.SUCCESS: set(),
    ActionStatus.ERROR: set(),
}


def generate_action_id() -> str:
    return f"act_{uuid.uuid4().hex[:12]}"


class _ActionBase(BaseModel):
    id: str = Field(default_factory=generate_action_id)
    status: ActionStatus = ActionStatus.PENDING
    error: Optional[str] = None

    @property
    def is_mutating(self) -> bool:
        return True

    @property
    def is_terminal(self) -> bool:
        return self.status in (ActionStatus.SUCCESS, ActionStatus.ERROR)

    def transition(self, status: ActionStatus, error: Optional[str] = None) -> None:
        """Move to ``status``; raises ValueError if the move is not allowed."""
        if status not in STATUS_TRANSITIONS[self.status]:
            raise ValueError(
                f"Invalid action transition: {self.status.value} -> {status.value}"
            )
        self.status = status
        self.error = error if status == ActionStatus.ERROR else None

    def fresh_copy(self) -> "_ActionBase":
        """Same operation, new id, back to pending."""
        return self.model_copy(
            update={"id": generate_action_id(), "status": ActionStatus.PENDING, "error": None}
        )


class FileAction(_ActionBase):
    """Create (or overwrite) a file with full content."""

    type: Literal["file"] = "file"
    path: str = Field(min_length=1)
    content: str

    @property
    def target(self) -> str:
        return self.path

    def describe(self) -> str:
        return f"Creating {self.path}"


class ModifyAction(_ActionBase):
    """Replace the content of an existing file."""

    type: Literal["modify"] = "modify"
    path: str = Field(min_length=1)
    new_content: str

    @property
    def target(self) -> str:
        return self.path

    def describe(self) -> str:
        return f"Modifying {self.path}"


class DeleteAction(_ActionBase):
    type: Literal["delete"] = "delete"
    path: str = Field(min_length=1)

    @property
    def target(self) -> str:
        return self.path

    def describe(self) -> str:
        return f"Deleting {self.path}"


class ShellAction(_ActionBase):
    type: Literal["shell"] = "shell"
    command: str = Field(min_length=1)

    @property
    def target(self) -> str:
        return self.command

    @property
    def is_mutating(self) -> bool:
        return False

    def describe(self) -> str:
        return f"Running: {self.command}"


Action = Annotated[
    Union[FileAction, ModifyAction, DeleteAction, ShellAction],
    Field(discriminator="type"),
]

FILE_ACTION_TYPES = (FileAction, ModifyAction, DeleteAction)

_ACTION_ADAPTER: TypeAdapter = TypeAdapter(Action)


def parse_action(data: Any) -> Action:
    """Validate an untrusted dict (or JSON string) into an Action variant."""
    if isinstance(data, (str, bytes)):
        return _ACTION_ADAPTER.validate_json(data)
    return _ACTION_ADAPTER.validate_python(data)


def new_content_of(action: Action) -> Optional[str]:
    """Content the action writes, or None for deletes and shell commands."""
    if isinstance(action, FileAction):
        return action.content
    if isinstance(action, ModifyAction):
        return action.new_content
    return None
