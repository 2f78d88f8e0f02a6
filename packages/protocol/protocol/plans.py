"""
Task plan models.

A TaskPlan is what the AI collaborator proposes for plan-based requests:
an ordered set of tasks with dependency and complexity metadata that must
be approved before execution.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from protocol.actions import Action, DeleteAction, FileAction, ModifyAction, ShellAction


class TaskType(str, Enum):
    FILE = "file"
    SHELL = "shell"
    MODIFY = "modify"
    DELETE = "delete"


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class PlanStatus(str, Enum):
    DRAFT = "draft"
    APPROVED = "approved"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


def generate_plan_id() -> str:
    return f"plan_{uuid.uuid4().hex[:12]}"


class PlanTask(BaseModel):
    id: str
    type: TaskType
    description: str = ""
    target: str = Field(min_length=1)
    depends_on: List[str] = Field(default_factory=list)
    complexity: int = Field(default=1, ge=1, le=5)
    status: TaskStatus = TaskStatus.PENDING
    error: Optional[str] = None
    # File content may come with the plan or be generated per task at execution time.
    content: Optional[str] = None

    @property
    def needs_content(self) -> bool:
        return self.type in (TaskType.FILE, TaskType.MODIFY) and self.content is None

    def to_action(self, content: Optional[str] = None) -> Action:
        body = content if content is not None else self.content
        if self.type == TaskType.SHELL:
            return ShellAction(command=self.target)
        if self.type == TaskType.DELETE:
            return DeleteAction(path=self.target)
        if body is None:
            raise ValueError(f"Task {self.id} has no content for {self.target}")
        if self.type == TaskType.MODIFY:
            return ModifyAction(path=self.target, new_content=body)
        return FileAction(path=self.target, content=body)


class TaskPlan(BaseModel):
    id: str = Field(default_factory=generate_plan_id)
    summary: str
    description: str = ""
    tasks: List[PlanTask] = Field(default_factory=list)
    files_to_create: List[str] = Field(default_factory=list)
    files_to_modify: List[str] = Field(default_factory=list)
    dependencies: List[str] = Field(default_factory=list)
    status: PlanStatus = PlanStatus.DRAFT
    iteration: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="after")
    def _check_task_references(self) -> "TaskPlan":
        ids = [task.id for task in self.tasks]
        if len(ids) != len(set(ids)):
            raise ValueError("Task ids must be unique")
        known = set(ids)
        for task in self.tasks:
            unknown = [dep for dep in task.depends_on if dep not in known]
            if unknown:
                raise ValueError(f"Task {task.id} depends on unknown task(s): {unknown}")
        return self

    def task(self, task_id: str) -> Optional[PlanTask]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def ordered_tasks(self) -> List[PlanTask]:
        """
        Shell tasks first (installs before the files that import them), then
        file tasks in dependency order. Original order breaks ties.

        Raises:
            ValueError: If task dependencies form a cycle
        """
        shell = [t for t in self.tasks if t.type == TaskType.SHELL]
        files = [t for t in self.tasks if t.type != TaskType.SHELL]

        ordered: List[PlanTask] = list(shell)
        placed = {t.id for t in shell}
        remaining = list(files)
        while remaining:
            progressed = False
            for task in list(remaining):
                if all(dep in placed for dep in task.depends_on):
                    ordered.append(task)
                    placed.add(task.id)
                    remaining.remove(task)
                    progressed = True
            if not progressed:
                raise ValueError(
                    f"Dependency cycle among tasks: {[t.id for t in remaining]}"
                )
        return ordered

    def status_counts(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in TaskStatus}
        for task in self.tasks:
            counts[task.status.value] += 1
        return counts
