"""
SQLite storage layer for tasks.

This module implements the TaskStore class that handles:
- SQLite database initialization with the tasks schema
- Creating, reading, updating and deleting tasks by integer id
- Listing tasks filtered by status and/or priority, ordered by due date

Blocking sqlite work runs in the default executor, and every operation holds
the store's asyncio.Lock, so operations are serialized and each one is atomic
on its own. There are no cross-operation transactions.

SQLite Schema:
    CREATE TABLE tasks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT NOT NULL,
        description TEXT DEFAULT '',
        due_date TEXT,              -- ISO 8601, UTC, nullable
        status TEXT DEFAULT 'pending',
        priority TEXT DEFAULT 'medium',
        category TEXT DEFAULT 'general',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );
"""

from __future__ import annotations

import asyncio
import sqlite3
from collections.abc import Callable, Generator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from mcp_tasks.errors import InvalidArgumentError, UnavailableError
from mcp_tasks.logging import get_logger

logger = get_logger(__name__)

# =============================================================================
# Data Models
# =============================================================================

DEFAULT_STATUS = "pending"
DEFAULT_PRIORITY = "medium"
DEFAULT_CATEGORY = "general"

UPDATABLE_FIELDS = ("title", "description", "due_date", "status", "priority", "category")


@dataclass
class Task:
    """A stored task.

    Attributes:
        id: Database id.
        title: Short title.
        description: Free text.
        due_date: Absolute due time (ISO 8601, UTC) or None.
        status: pending, in_progress or completed.
        priority: low, medium or high.
        category: Free-form grouping, "general" by default.
        created_at: Creation time (ISO 8601, UTC).
        updated_at: Last modification time (ISO 8601, UTC).
    """

    id: int
    title: str
    description: str
    due_date: str | None
    status: str
    priority: str
    category: str
    created_at: str
    updated_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Task:
        return cls(
            id=row["id"],
            title=row["title"],
            description=row["description"] or "",
            due_date=row["due_date"],
            status=row["status"],
            priority=row["priority"],
            category=row["category"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "due_date": self.due_date,
            "status": self.status,
            "priority": self.priority,
            "category": self.category,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


# =============================================================================
# SQLite Schema
# =============================================================================

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS tasks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    description TEXT DEFAULT '',
    due_date TEXT,
    status TEXT DEFAULT 'pending',
    priority TEXT DEFAULT 'medium',
    category TEXT DEFAULT 'general',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);
CREATE INDEX IF NOT EXISTS idx_tasks_priority ON tasks(priority);
CREATE INDEX IF NOT EXISTS idx_tasks_due_date ON tasks(due_date);
"""


def _utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


# =============================================================================
# TaskStore Class
# =============================================================================


class TaskStore:
    """
    SQLite-based task storage.

    Example:
        >>> store = TaskStore("data.db")
        >>> await store.initialize()
        >>> task_id = await store.create(title="Write report", priority="high")
        >>> tasks = await store.query(status="pending")
    """

    def __init__(
        self,
        db_path: str | Path,
        now: Callable[[], str] = _utc_now_iso,
    ) -> None:
        """
        Initialize the TaskStore.

        Args:
            db_path: Path to the SQLite database file.
            now: Source of created/updated timestamps.
        """
        self.db_path = Path(db_path)
        self._now = now
        self._initialized = False
        self._lock = asyncio.Lock()

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            yield conn
        finally:
            conn.close()

    async def _run(self, operation: str, func: Callable[[], Any], **details: Any) -> Any:
        """Run blocking sqlite work in the executor under the store lock."""
        await self._ensure_initialized()
        async with self._lock:
            try:
                return await asyncio.get_event_loop().run_in_executor(None, func)
            except sqlite3.Error as e:
                logger.error(
                    f"Task store {operation} failed",
                    extra={"db_path": str(self.db_path), "error": str(e), **details},
                )
                raise UnavailableError(
                    f"Task store {operation} failed: {e}",
                    details={"operation": operation, **details},
                ) from e

    async def initialize(self) -> None:
        """
        Create the tasks table and indices if they don't exist.

        Idempotent and safe to call multiple times.

        Raises:
            UnavailableError: If the database cannot be initialized.
        """
        if self._initialized:
            return

        async with self._lock:
            if self._initialized:
                return

            def _init_db() -> None:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                with self._get_connection() as conn:
                    conn.executescript(SCHEMA_SQL)
                    conn.commit()

            try:
                await asyncio.get_event_loop().run_in_executor(None, _init_db)
            except (sqlite3.Error, OSError) as e:
                logger.error(
                    "Failed to initialize task database",
                    extra={"db_path": str(self.db_path), "error": str(e)},
                )
                raise UnavailableError(
                    f"Failed to initialize task database: {e}",
                    details={"db_path": str(self.db_path)},
                ) from e

            self._initialized = True
            logger.info(
                "Task database initialized",
                extra={"db_path": str(self.db_path)},
            )

    async def _ensure_initialized(self) -> None:
        if not self._initialized:
            await self.initialize()

    async def create(
        self,
        *,
        title: str,
        description: str = "",
        due_date: str | None = None,
        status: str = DEFAULT_STATUS,
        priority: str = DEFAULT_PRIORITY,
        category: str = DEFAULT_CATEGORY,
    ) -> int:
        """
        Insert a task.

        Returns:
            The new task id.
        """
        timestamp = self._now()

        def _insert() -> int:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO tasks (title, description, due_date, status,
                                       priority, category, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        title,
                        description,
                        due_date,
                        status,
                        priority,
                        category,
                        timestamp,
                        timestamp,
                    ),
                )
                conn.commit()
                return cursor.lastrowid or 0

        task_id = await self._run("insert", _insert, title=title)
        logger.debug("Task created", extra={"task_id": task_id})
        return task_id

    async def get(self, task_id: int) -> Task | None:
        """Fetch one task, or None if it doesn't exist."""

        def _get() -> Task | None:
            with self._get_connection() as conn:
                row = conn.execute(
                    "SELECT * FROM tasks WHERE id = ?", (task_id,)
                ).fetchone()
                return Task.from_row(row) if row is not None else None

        return await self._run("read", _get, task_id=task_id)

    async def query(
        self,
        *,
        status: str | None = None,
        priority: str | None = None,
    ) -> list[Task]:
        """
        List tasks matching every given filter.

        Ordered by due date ascending; tasks without a due date come last,
        ties broken by id.
        """

        def _query() -> list[Task]:
            conditions = []
            params: list[Any] = []

            if status is not None:
                conditions.append("status = ?")
                params.append(status)

            if priority is not None:
                conditions.append("priority = ?")
                params.append(priority)

            where_clause = " WHERE " + " AND ".join(conditions) if conditions else ""
            sql = (
                "SELECT * FROM tasks"
                + where_clause
                + " ORDER BY due_date IS NULL, due_date ASC, id ASC"
            )

            with self._get_connection() as conn:
                return [Task.from_row(row) for row in conn.execute(sql, params)]

        return await self._run("query", _query)

    async def update(self, task_id: int, fields: dict[str, Any]) -> int:
        """
        Change the given fields of a task and refresh updated_at.

        An empty `fields` mapping still refreshes updated_at.

        Args:
            task_id: Task to update.
            fields: Column values keyed by name (see UPDATABLE_FIELDS).

        Returns:
            Number of rows changed: 1, or 0 when the id doesn't exist.

        Raises:
            InvalidArgumentError: If a field is not updatable.
        """
        unknown = sorted(set(fields) - set(UPDATABLE_FIELDS))
        if unknown:
            raise InvalidArgumentError(
                f"Cannot update field(s): {', '.join(unknown)}",
                details={"fields": unknown},
            )

        columns = [name for name in UPDATABLE_FIELDS if name in fields]
        assignments = [f"{name} = ?" for name in columns] + ["updated_at = ?"]
        values = [fields[name] for name in columns] + [self._now(), task_id]

        def _update() -> int:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    f"UPDATE tasks SET {', '.join(assignments)} WHERE id = ?",
                    values,
                )
                conn.commit()
                return cursor.rowcount

        changes = await self._run("update", _update, task_id=task_id)
        logger.debug("Task updated", extra={"task_id": task_id, "changes": changes})
        return changes

    async def delete(self, task_id: int) -> int:
        """
        Delete a task.

        Returns:
            Number of rows removed: 1, or 0 when the id doesn't exist.
        """

        def _delete() -> int:
            with self._get_connection() as conn:
                cursor = conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
                conn.commit()
                return cursor.rowcount

        changes = await self._run("delete", _delete, task_id=task_id)
        logger.debug("Task deleted", extra={"task_id": task_id, "changes": changes})
        return changes

    async def count(self) -> int:
        """Total number of stored tasks."""

        def _count() -> int:
            with self._get_connection() as conn:
                return conn.execute("SELECT COUNT(*) FROM tasks").fetchone()[0]

        return await self._run("count", _count)
