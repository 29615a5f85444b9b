"""
Tests for the task storage layer.

This test module validates:
- SQLite schema creation and initialization
- Creating and reading tasks with defaults
- Filtering and due-date ordering of listings
- Partial updates, including updates of unknown ids
- Deleting (twice) and error mapping for database failures
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from mcp_tasks.errors import InvalidArgumentError, UnavailableError
from mcp_tasks.storage import Task, TaskStore

# =============================================================================
# Tests for Initialization
# =============================================================================


class TestTaskStoreInit:
    """Tests for TaskStore initialization."""

    async def test_initialize_creates_database(self, temp_db_path: Path) -> None:
        """Test that initialize creates the database file."""
        store = TaskStore(temp_db_path)
        assert not temp_db_path.exists()

        await store.initialize()

        assert temp_db_path.exists()

    async def test_initialize_creates_parent_dirs(self, tmp_path: Path) -> None:
        """Test that initialize creates parent directories."""
        db_path = tmp_path / "nested" / "dir" / "tasks.db"
        store = TaskStore(db_path)

        await store.initialize()

        assert db_path.exists()

    async def test_initialize_is_idempotent(self, temp_db_path: Path) -> None:
        """Test that initialize can be called multiple times safely."""
        store = TaskStore(temp_db_path)

        await store.initialize()
        await store.initialize()

        assert await store.count() == 0

    async def test_operations_initialize_lazily(self, temp_db_path: Path) -> None:
        """Test that the first operation initializes the schema."""
        store = TaskStore(temp_db_path)

        task_id = await store.create(title="Lazy")

        assert task_id == 1

    async def test_initialize_failure_raises_unavailable(self, tmp_path: Path) -> None:
        """Test that an unusable path maps to UnavailableError."""
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        store = TaskStore(blocker / "tasks.db")

        with pytest.raises(UnavailableError):
            await store.initialize()

    async def test_existing_data_survives_reopen(self, temp_db_path: Path) -> None:
        """Test that tasks persist across store instances."""
        first = TaskStore(temp_db_path)
        await first.create(title="Persisted")

        second = TaskStore(temp_db_path)
        tasks = await second.query()

        assert [task.title for task in tasks] == ["Persisted"]


# =============================================================================
# Tests for Create / Get
# =============================================================================


class TestTaskStoreCreate:
    """Tests for creating and fetching tasks."""

    async def test_create_applies_defaults(self, store: TaskStore) -> None:
        """Test default status, priority, category and empty description."""
        task_id = await store.create(title="Write report")

        task = await store.get(task_id)

        assert isinstance(task, Task)
        assert task.title == "Write report"
        assert task.description == ""
        assert task.due_date is None
        assert task.status == "pending"
        assert task.priority == "medium"
        assert task.category == "general"
        assert task.created_at == task.updated_at

    async def test_create_returns_increasing_ids(self, store: TaskStore) -> None:
        """Test that ids are assigned in insertion order."""
        first = await store.create(title="a")
        second = await store.create(title="b")

        assert second > first > 0

    async def test_create_with_all_fields(self, store: TaskStore) -> None:
        task_id = await store.create(
            title="Ship",
            description="Release 1.0",
            due_date="2026-10-20T09:00:00+00:00",
            status="in_progress",
            priority="high",
            category="work",
        )

        task = await store.get(task_id)

        assert task is not None
        assert task.to_dict()["due_date"] == "2026-10-20T09:00:00+00:00"
        assert task.priority == "high"
        assert task.category == "work"

    async def test_get_missing_returns_none(self, store: TaskStore) -> None:
        assert await store.get(999) is None

    async def test_concurrent_creates(self, store: TaskStore) -> None:
        """Test that concurrent inserts each get a distinct id."""
        ids = await asyncio.gather(*(store.create(title=f"t{i}") for i in range(10)))

        assert len(set(ids)) == 10
        assert await store.count() == 10


# =============================================================================
# Tests for Query
# =============================================================================


class TestTaskStoreQuery:
    """Tests for listing tasks."""

    async def test_orders_by_due_date_with_nulls_last(self, store: TaskStore) -> None:
        """Test due-date ascending order, undated tasks last by id."""
        undated_a = await store.create(title="undated a")
        late = await store.create(title="late", due_date="2026-12-01T09:00:00+00:00")
        undated_b = await store.create(title="undated b")
        early = await store.create(title="early", due_date="2026-10-18T09:00:00+00:00")

        tasks = await store.query()

        assert [task.id for task in tasks] == [early, late, undated_a, undated_b]

    async def test_filter_by_status(self, store: TaskStore) -> None:
        await store.create(title="open")
        await store.create(title="done", status="completed")

        tasks = await store.query(status="completed")

        assert [task.title for task in tasks] == ["done"]

    async def test_filter_by_status_and_priority(self, store: TaskStore) -> None:
        await store.create(title="a", status="pending", priority="high")
        await store.create(title="b", status="pending", priority="low")
        await store.create(title="c", status="completed", priority="high")

        tasks = await store.query(status="pending", priority="high")

        assert [task.title for task in tasks] == ["a"]

    async def test_empty_store(self, store: TaskStore) -> None:
        assert await store.query() == []


# =============================================================================
# Tests for Update
# =============================================================================


class TestTaskStoreUpdate:
    """Tests for partial updates."""

    async def test_update_only_given_fields(self, temp_db_path: Path) -> None:
        """Test that untouched columns keep their values."""
        stamps = iter(["2026-10-17T10:00:00+00:00", "2026-10-17T11:00:00+00:00"])
        store = TaskStore(temp_db_path, now=lambda: next(stamps))
        task_id = await store.create(title="Draft", description="v1", priority="low")

        changes = await store.update(task_id, {"status": "completed"})

        task = await store.get(task_id)
        assert changes == 1
        assert task is not None
        assert task.status == "completed"
        assert task.description == "v1"
        assert task.priority == "low"
        assert task.created_at == "2026-10-17T10:00:00+00:00"
        assert task.updated_at == "2026-10-17T11:00:00+00:00"

    async def test_update_can_clear_due_date(self, store: TaskStore) -> None:
        task_id = await store.create(title="x", due_date="2026-10-20T09:00:00+00:00")

        await store.update(task_id, {"due_date": None})

        task = await store.get(task_id)
        assert task is not None
        assert task.due_date is None

    async def test_empty_update_refreshes_timestamp(self, temp_db_path: Path) -> None:
        stamps = iter(["2026-10-17T10:00:00+00:00", "2026-10-17T12:00:00+00:00"])
        store = TaskStore(temp_db_path, now=lambda: next(stamps))
        task_id = await store.create(title="x")

        assert await store.update(task_id, {}) == 1

        task = await store.get(task_id)
        assert task is not None
        assert task.updated_at == "2026-10-17T12:00:00+00:00"

    async def test_update_unknown_id_changes_nothing(self, store: TaskStore) -> None:
        """Test that updating a missing id reports 0 and leaves data alone."""
        task_id = await store.create(title="keep")
        before = await store.query()

        changes = await store.update(task_id + 100, {"title": "hijack"})

        assert changes == 0
        assert await store.query() == before

    async def test_update_rejects_unknown_columns(self, store: TaskStore) -> None:
        task_id = await store.create(title="x")

        with pytest.raises(InvalidArgumentError):
            await store.update(task_id, {"created_at": "never"})


# =============================================================================
# Tests for Delete
# =============================================================================


class TestTaskStoreDelete:
    """Tests for deleting tasks."""

    async def test_delete_twice(self, store: TaskStore) -> None:
        """Test that the first delete reports 1 and the second 0."""
        task_id = await store.create(title="gone")

        assert await store.delete(task_id) == 1
        assert await store.delete(task_id) == 0
        assert await store.get(task_id) is None

    async def test_delete_leaves_other_tasks(self, store: TaskStore) -> None:
        keep = await store.create(title="keep")
        drop = await store.create(title="drop")

        await store.delete(drop)

        assert [task.id for task in await store.query()] == [keep]
