"""In-memory repository for submitted tasks.

Tasks live for the lifetime of the process only. All mutation happens on the
event loop and is keyed by a unique task id, so no lock is taken.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import structlog

from src.models.task_models import Task, TaskStatus, can_transition

log = structlog.get_logger(__name__)

_IMMUTABLE_FIELDS = frozenset({"id", "text", "created_at", "correlation_id"})


class TaskStore:
    """Process-scoped task repository (insertion ordered)."""

    def __init__(self) -> None:
        self._tasks: dict[str, Task] = {}

    def __len__(self) -> int:
        return len(self._tasks)

    def create(self, text: str) -> Task:
        """Create and register a new `pending` task."""
        return self.add(Task(text=text))

    def add(self, task: Task) -> Task:
        if task.id in self._tasks:
            raise ValueError(f"Task {task.id} already exists")
        self._tasks[task.id] = task
        log.info("task_registered", task_id=task.id, status=task.status.value)
        return task

    def get(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def list_all(self) -> list[Task]:
        """All tasks in the order they were registered."""
        return list(self._tasks.values())

    def update_status(self, task_id: str, status: TaskStatus, **fields: Any) -> Task | None:
        """Move a task to `status`, optionally setting result fields.

        Unknown ids are logged and ignored: a poller may outlive the record it
        drives. Backward transitions are rejected the same way.
        """
        current = self._tasks.get(task_id)
        if current is None:
            log.warning("task_update_unknown_id", task_id=task_id, status=status.value)
            return None
        if status != current.status and not can_transition(current.status, status):
            log.warning(
                "task_update_illegal_transition",
                task_id=task_id,
                current=current.status.value,
                requested=status.value,
            )
            return None
        blocked = _IMMUTABLE_FIELDS.intersection(fields)
        if blocked:
            raise ValueError(f"Immutable task fields cannot be updated: {sorted(blocked)}")

        updated = current.model_copy(
            update={**fields, "status": status, "updated_at": datetime.now(timezone.utc)}
        )
        self._tasks[task_id] = updated
        log.info("task_status_updated", task_id=task_id, status=status.value)
        return updated

    def set_external_task_id(self, task_id: str, external_task_id: str) -> Task | None:
        """Record the external job id once; later attempts to change it are ignored."""
        current = self._tasks.get(task_id)
        if current is None:
            log.warning("task_update_unknown_id", task_id=task_id)
            return None
        if current.external_task_id is not None:
            if current.external_task_id != external_task_id:
                log.warning(
                    "task_external_id_already_set",
                    task_id=task_id,
                    external_task_id=current.external_task_id,
                )
            return current
        updated = current.model_copy(
            update={"external_task_id": external_task_id, "updated_at": datetime.now(timezone.utc)}
        )
        self._tasks[task_id] = updated
        return updated
