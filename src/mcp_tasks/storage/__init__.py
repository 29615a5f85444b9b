"""
Task persistence.

This package provides the SQLite-backed TaskStore used by the task tools.
"""

from mcp_tasks.storage.tasks import Task, TaskStore

__all__ = [
    "Task",
    "TaskStore",
]
