"""
Tool routing and registration for the task manager MCP server.

This module provides:
- ToolDescriptor: name, parameter model and handler of one tool
- ToolRegistry: registration, lookup and parameter validation

Each tool declares its parameters as a pydantic model. Validation is shallow
and strict: required fields must be present and primitive types must match
exactly (no "5" -> 5 coercion), while unknown fields are ignored.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, ValidationError

from mcp_tasks.errors import InvalidArgumentError, ToolNotFoundError

if TYPE_CHECKING:
    from mcp_tasks.context import ToolContext

ToolHandler = Callable[["ToolContext", Any], Awaitable[Any]]


class ToolParams(BaseModel):
    """
    Base class for tool parameter models.

    Unknown fields sent by a peer are dropped, and values are checked
    strictly against the declared primitive types.
    """

    model_config = ConfigDict(extra="ignore", strict=True)


@dataclass(frozen=True)
class ToolDescriptor:
    """
    A registered tool.

    Attributes:
        name: Unique tool name (part of the wire contract).
        params_model: Pydantic model describing the parameters.
        handler: Async callable invoked with (ctx, validated params).
        description: Human-readable summary.
    """

    name: str
    params_model: type[BaseModel]
    handler: ToolHandler
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Describe the tool, including its JSON schema."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.params_model.model_json_schema(),
        }


def describe_validation_error(tool: str, error: ValidationError) -> str:
    """
    Render a pydantic ValidationError as a single line.

    Example:
        "Invalid parameters for 'add_task': title: Field required"
    """
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "params"
        problems.append(f"{location}: {item['msg']}")
    return f"Invalid parameters for '{tool}': " + "; ".join(problems)


class ToolRegistry:
    """
    Registry mapping tool names to descriptors.

    Registration happens at startup; a duplicate name is a fatal
    configuration error rather than a silent override.

    Example:
        >>> registry = ToolRegistry()
        >>> registry.register("list_tasks", ListTasksParams, handle_list_tasks)
        >>> descriptor = registry.lookup("list_tasks")
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolDescriptor] = {}

    def register(
        self,
        name: str,
        params_model: type[BaseModel],
        handler: ToolHandler,
        description: str = "",
    ) -> ToolDescriptor:
        """
        Register a tool.

        Args:
            name: Tool name.
            params_model: Pydantic model for the parameters.
            handler: Async function handling the call.
            description: Optional summary.

        Returns:
            The stored descriptor.

        Raises:
            ValueError: If a tool is already registered under the name.
        """
        if name in self._tools:
            raise ValueError(f"Tool '{name}' is already registered")
        descriptor = ToolDescriptor(
            name=name,
            params_model=params_model,
            handler=handler,
            description=description,
        )
        self._tools[name] = descriptor
        return descriptor

    def lookup(self, name: str) -> ToolDescriptor:
        """
        Get the descriptor for a tool.

        Raises:
            ToolNotFoundError: If no tool is registered under the name.
        """
        descriptor = self._tools.get(name)
        if descriptor is None:
            raise ToolNotFoundError(name)
        return descriptor

    def validate(self, name: str, params: dict[str, Any]) -> BaseModel:
        """
        Validate raw envelope params against a tool's model.

        Args:
            name: Tool name.
            params: The `params` object from the envelope.

        Returns:
            The validated parameter model instance.

        Raises:
            ToolNotFoundError: If the tool is unknown.
            InvalidArgumentError: If the params violate the schema.
        """
        descriptor = self.lookup(name)
        try:
            return descriptor.params_model.model_validate(params)
        except ValidationError as e:
            raise InvalidArgumentError(
                describe_validation_error(name, e),
                details={"tool": name, "errors": e.errors(include_url=False)},
            ) from e

    def list_tools(self) -> list[str]:
        """List registered tool names in registration order."""
        return list(self._tools)

    def describe(self) -> list[dict[str, Any]]:
        """Describe every registered tool."""
        return [descriptor.to_dict() for descriptor in self._tools.values()]

    def __iter__(self) -> Iterator[ToolDescriptor]:
        return iter(list(self._tools.values()))

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)
