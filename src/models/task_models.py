"""Pydantic models for submitted tasks and their API representation."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class TaskStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.completed, TaskStatus.failed)


# Forward-only lifecycle; `failed` is reachable from any non-terminal state.
_ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.pending: frozenset({TaskStatus.processing, TaskStatus.completed, TaskStatus.failed}),
    TaskStatus.processing: frozenset({TaskStatus.completed, TaskStatus.failed}),
    TaskStatus.completed: frozenset(),
    TaskStatus.failed: frozenset(),
}


def can_transition(current: TaskStatus, target: TaskStatus) -> bool:
    """Return True if a task may move from `current` to `target`."""
    return target in _ALLOWED_TRANSITIONS[current]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Task(BaseModel):
    """One submitted text and its end-to-end processing record."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    text: str = Field(..., min_length=1)
    status: TaskStatus = TaskStatus.pending
    correlation_id: str = Field(default_factory=lambda: uuid4().hex)
    external_task_id: str | None = None
    result_url: str | None = None
    result_locator: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class SubmitRequest(BaseModel):
    text: str = Field(...)


class TaskResponse(BaseModel):
    """Wire shape of a task, camelCase like the browser client expects."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    text: str
    status: TaskStatus
    task_id: str | None = Field(default=None, alias="taskId")
    image_url: str | None = Field(default=None, alias="imageUrl")
    file_name: str | None = Field(default=None, alias="fileName")
    correlation_id: str = Field(..., alias="correlationId")
    timestamp: datetime
    updated_at: datetime = Field(..., alias="updatedAt")

    @classmethod
    def from_task(cls, task: Task) -> TaskResponse:
        return cls(
            id=task.id,
            text=task.text,
            status=task.status,
            task_id=task.external_task_id,
            image_url=task.result_url,
            file_name=task.result_locator,
            correlation_id=task.correlation_id,
            timestamp=task.created_at,
            updated_at=task.updated_at,
        )
