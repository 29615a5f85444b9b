"""
Pytest configuration for the task manager MCP server tests.
"""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import pytest

from mcp_tasks.dates import DueDateResolver
from mcp_tasks.storage import TaskStore

# Saturday 2026-10-17, 14:30 UTC
FIXED_NOW = datetime(2026, 10, 17, 14, 30, tzinfo=UTC)


# =============================================================================
# Shared Fixtures
# =============================================================================


@pytest.fixture
def temp_db_path(tmp_path: Path) -> Path:
    """Path for a fresh SQLite database."""
    return tmp_path / "tasks.db"


@pytest.fixture
async def store(temp_db_path: Path) -> TaskStore:
    """An initialized TaskStore."""
    task_store = TaskStore(temp_db_path)
    await task_store.initialize()
    return task_store


@pytest.fixture
def resolver() -> DueDateResolver:
    """A UTC resolver pinned to FIXED_NOW."""
    return DueDateResolver(timezone="UTC", clock=lambda: FIXED_NOW)
