"""
MCP tools package for the task manager server.

Modules:
- tasks: list_tasks, add_task, update_task, delete_task
"""

from mcp_tasks.tools.tasks import (
    AddTaskParams,
    DeleteTaskParams,
    ListTasksParams,
    TaskTools,
    UpdateTaskParams,
)

__all__ = [
    "TaskTools",
    "ListTasksParams",
    "AddTaskParams",
    "UpdateTaskParams",
    "DeleteTaskParams",
]
