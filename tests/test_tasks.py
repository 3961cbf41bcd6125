"""Tests for the in-memory task store."""

import threading

import pytest
from pydantic import ValidationError

from nexusrag.components.tasks import InMemoryTaskStore
from nexusrag.models import TaskPriority, TaskRequest


def test_create_and_get_task():
    store = InMemoryTaskStore()
    request = TaskRequest(workspace_id="ws", title="Write roadmap", priority="high")

    assert store.create_task(request) is True
    task = store.get_task("ws", "write roadmap")
    assert task.title == "Write roadmap"
    assert task.priority == TaskPriority.HIGH
    assert task.status == "todo"


def test_duplicate_title_is_skipped_case_insensitively():
    store = InMemoryTaskStore()
    assert store.create_task(TaskRequest(workspace_id="ws", title="Write roadmap"))
    assert not store.create_task(TaskRequest(workspace_id="ws", title="  WRITE ROADMAP "))
    assert len(store.list_tasks("ws")) == 1


def test_same_title_in_other_workspace_is_created():
    store = InMemoryTaskStore()
    assert store.create_task(TaskRequest(workspace_id="a", title="Write roadmap"))
    assert store.create_task(TaskRequest(workspace_id="b", title="Write roadmap"))
    assert len(store.list_tasks()) == 2
    assert [t.workspace_id for t in store.list_tasks("b")] == ["b"]


def test_concurrent_creates_insert_once():
    store = InMemoryTaskStore()
    barrier = threading.Barrier(8)
    outcomes = []
    lock = threading.Lock()

    def create():
        barrier.wait(timeout=5)
        created = store.create_task(TaskRequest(workspace_id="ws", title="Book flights"))
        with lock:
            outcomes.append(created)

    threads = [threading.Thread(target=create) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert outcomes.count(True) == 1
    assert outcomes.count(False) == 7


def test_task_request_validation():
    with pytest.raises(ValidationError):
        TaskRequest(workspace_id="ws", title="   ")
    with pytest.raises(ValidationError):
        TaskRequest(workspace_id="ws", title="Pay rent", due_date="next friday")
    request = TaskRequest(workspace_id="ws", title="Pay rent", due_date="2026-11-01")
    assert request.due_date.isoformat() == "2026-11-01"
