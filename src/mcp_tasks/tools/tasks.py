"""
Task tools for the task manager MCP server.

This module implements the tool catalogue exposed over the envelope protocol:
- list_tasks: List tasks, optionally filtered by status and priority
- add_task: Create a task; the due date is given in natural language
- update_task: Change selected fields of a task
- delete_task: Remove a task by id

Tool names are part of the wire contract. Each tool declares a parameter
model; the dispatcher validates the envelope params against it before the
handler runs, so handlers receive typed, already-checked values.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Literal

from pydantic import AliasChoices, Field

from mcp_tasks.errors import NotFoundError
from mcp_tasks.logging import get_logger
from mcp_tasks.routing import ToolParams, ToolRegistry

if TYPE_CHECKING:
    from mcp_tasks.context import ToolContext
    from mcp_tasks.dates import DueDateResolver
    from mcp_tasks.storage.tasks import TaskStore

logger = get_logger(__name__)

TaskStatus = Literal["pending", "in_progress", "completed"]
TaskPriority = Literal["low", "medium", "high"]

# Fields update_task copies verbatim when supplied with a non-null value
_PLAIN_UPDATE_FIELDS = ("title", "description", "status", "priority", "category")


# =============================================================================
# Parameter Models
# =============================================================================


class ListTasksParams(ToolParams):
    """Parameters for list_tasks."""

    status: TaskStatus | None = Field(default=None, description="Filter by status")
    priority: TaskPriority | None = Field(default=None, description="Filter by priority")


class AddTaskParams(ToolParams):
    """Parameters for add_task."""

    title: str = Field(min_length=1, description="Task title")
    description: str | None = Field(default=None, description="Task description")
    priority: TaskPriority | None = Field(default=None, description="Task priority")
    due: str | None = Field(
        default=None,
        validation_alias=AliasChoices("due", "due_date"),
        description='Due date in natural language (e.g., "tomorrow", "next Friday")',
    )
    status: TaskStatus | None = Field(default=None, description="Initial status")
    category: str | None = Field(default=None, description="Task category")


class UpdateTaskParams(ToolParams):
    """Parameters for update_task. Only supplied fields are changed."""

    id: int = Field(description="Task ID to update")
    title: str | None = Field(default=None, min_length=1, description="New title")
    description: str | None = Field(default=None, description="New description")
    status: TaskStatus | None = Field(default=None, description="New status")
    priority: TaskPriority | None = Field(default=None, description="New priority")
    due: str | None = Field(
        default=None,
        validation_alias=AliasChoices("due", "due_date"),
        description="New due date in natural language; null or empty clears it",
    )
    category: str | None = Field(default=None, description="New category")


class DeleteTaskParams(ToolParams):
    """Parameters for delete_task."""

    id: int = Field(description="Task ID to delete")


# =============================================================================
# Handlers
# =============================================================================


class TaskTools:
    """
    Handlers for the task tool catalogue.

    Example:
        >>> tools = TaskTools(store, DueDateResolver())
        >>> tools.register(registry)
    """

    def __init__(self, store: TaskStore, resolver: DueDateResolver) -> None:
        self.store = store
        self.resolver = resolver

    def register(self, registry: ToolRegistry) -> None:
        """
        Register every task tool.

        Raises:
            ValueError: If any of the names is already registered.
        """
        registry.register(
            "list_tasks",
            ListTasksParams,
            self.handle_list_tasks,
            description="List all tasks or filter by status/priority",
        )
        registry.register(
            "add_task",
            AddTaskParams,
            self.handle_add_task,
            description="Add a task with title, description, priority and natural language due date",
        )
        registry.register(
            "update_task",
            UpdateTaskParams,
            self.handle_update_task,
            description="Update title, description, status, priority, category or due date of a task",
        )
        registry.register(
            "delete_task",
            DeleteTaskParams,
            self.handle_delete_task,
            description="Delete a task by ID",
        )

    async def handle_list_tasks(
        self, _ctx: ToolContext, params: ListTasksParams
    ) -> dict[str, Any]:
        """
        Handle the list_tasks tool.

        Returns:
            {"tasks": [...], "count": n}, ordered by due date ascending.
        """
        tasks = await self.store.query(status=params.status, priority=params.priority)
        logger.info(
            "Listed tasks",
            extra={
                "count": len(tasks),
                "status": params.status,
                "priority": params.priority,
            },
        )
        return {"tasks": [task.to_dict() for task in tasks], "count": len(tasks)}

    async def handle_add_task(
        self, _ctx: ToolContext, params: AddTaskParams
    ) -> dict[str, Any]:
        """
        Handle the add_task tool.

        An absent or unresolvable due phrase stores the task without a due
        date.

        Returns:
            {"success": True, "task_id": id, "due_date": iso-or-None}
        """
        due_date = await self.resolver.resolve(params.due) if params.due else None

        task_id = await self.store.create(
            title=params.title,
            description=params.description or "",
            due_date=due_date,
            status=params.status or "pending",
            priority=params.priority or "medium",
            category=params.category or "general",
        )
        logger.info(
            "Task added",
            extra={"task_id": task_id, "due_date": due_date, "due_phrase": params.due},
        )
        return {"success": True, "task_id": task_id, "due_date": due_date}

    async def handle_update_task(
        self, _ctx: ToolContext, params: UpdateTaskParams
    ) -> dict[str, Any]:
        """
        Handle the update_task tool.

        Raises:
            NotFoundError: If no task has the given id (nothing is changed).
        """
        fields: dict[str, Any] = {}
        for name in _PLAIN_UPDATE_FIELDS:
            value = getattr(params, name)
            if name in params.model_fields_set and value is not None:
                fields[name] = value

        if "due" in params.model_fields_set:
            fields["due_date"] = (
                await self.resolver.resolve(params.due) if params.due else None
            )

        changes = await self.store.update(params.id, fields)
        if changes == 0:
            raise NotFoundError(
                f"Task with ID {params.id} not found",
                details={"task_id": params.id},
            )

        logger.info(
            "Task updated",
            extra={"task_id": params.id, "fields": sorted(fields)},
        )
        return {
            "success": True,
            "id": params.id,
            "changes": changes,
            "updated_fields": sorted(fields),
        }

    async def handle_delete_task(
        self, _ctx: ToolContext, params: DeleteTaskParams
    ) -> dict[str, Any]:
        """
        Handle the delete_task tool.

        Deleting a missing id is reported with changes == 0, not an error.
        """
        changes = await self.store.delete(params.id)
        logger.info("Task deleted", extra={"task_id": params.id, "changes": changes})
        return {"success": changes > 0, "id": params.id, "changes": changes}
