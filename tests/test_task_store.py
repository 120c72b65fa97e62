from __future__ import annotations

import pytest

from src.db.task_store import TaskStore
from src.models.task_models import Task, TaskStatus


def test_create_registers_pending_task():
    store = TaskStore()
    task = store.create("a sunset")

    assert task.status == TaskStatus.pending
    assert task.text == "a sunset"
    assert store.get(task.id) == task
    assert len(store) == 1


def test_list_all_preserves_insertion_order():
    store = TaskStore()
    first = store.create("one")
    second = store.add(Task(text="two", status=TaskStatus.processing))
    third = store.create("three")

    assert [t.id for t in store.list_all()] == [first.id, second.id, third.id]


def test_add_rejects_duplicate_id():
    store = TaskStore()
    task = store.create("dup")
    with pytest.raises(ValueError):
        store.add(task)


def test_update_status_unknown_id_is_ignored():
    store = TaskStore()
    assert store.update_status("missing", TaskStatus.failed) is None
    assert store.list_all() == []


def test_update_status_sets_result_fields():
    store = TaskStore()
    task = store.create("a cat")
    store.update_status(task.id, TaskStatus.processing)
    updated = store.update_status(
        task.id, TaskStatus.completed, result_url="https://files/x.png", result_locator="x.png"
    )

    assert updated is not None
    assert updated.status == TaskStatus.completed
    assert updated.result_url == "https://files/x.png"
    assert updated.result_locator == "x.png"
    assert updated.created_at == task.created_at
    assert updated.updated_at >= task.updated_at


def test_terminal_status_is_never_left():
    store = TaskStore()
    task = store.create("x")
    store.update_status(task.id, TaskStatus.failed)

    assert store.update_status(task.id, TaskStatus.processing) is None
    assert store.update_status(task.id, TaskStatus.completed) is None
    assert store.get(task.id).status == TaskStatus.failed


def test_backward_transition_is_rejected():
    store = TaskStore()
    task = store.create("x")
    store.update_status(task.id, TaskStatus.processing)

    assert store.update_status(task.id, TaskStatus.pending) is None
    assert store.get(task.id).status == TaskStatus.processing


def test_failed_is_reachable_from_pending_and_processing():
    store = TaskStore()
    a = store.create("a")
    b = store.create("b")
    store.update_status(b.id, TaskStatus.processing)

    assert store.update_status(a.id, TaskStatus.failed).status == TaskStatus.failed
    assert store.update_status(b.id, TaskStatus.failed).status == TaskStatus.failed


def test_immutable_fields_cannot_be_updated():
    store = TaskStore()
    task = store.create("x")
    with pytest.raises(ValueError):
        store.update_status(task.id, TaskStatus.processing, text="changed")


def test_external_task_id_is_set_once():
    store = TaskStore()
    task = store.create("x")

    store.set_external_task_id(task.id, "ext-1")
    store.set_external_task_id(task.id, "ext-2")

    assert store.get(task.id).external_task_id == "ext-1"
    assert store.set_external_task_id("missing", "ext-3") is None
