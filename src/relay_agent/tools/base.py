"""Base class for all tools."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable


@dataclass
class ToolResult:
    """Result returned by a tool execution.

    A tool signals a domain error without raising by setting ``error``.
    """

    output: str = ""
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.error is None

    @classmethod
    def ok(cls, output: str, **metadata: Any) -> "ToolResult":
        return cls(output=output, metadata=metadata)

    @classmethod
    def failure(cls, error: str, output: str = "") -> "ToolResult":
        return cls(output=output, error=error)


@dataclass(frozen=True)
class ToolDescriptor:
    """What the model is told about a tool."""

    name: str
    description: str
    input_schema: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    def to_anthropic_tool(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }

    def to_dict(self) -> dict[str, Any]:
        return self.to_anthropic_tool()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolDescriptor":
        return cls(
            name=data["name"],
            description=data.get("description", ""),
            input_schema=data.get("input_schema") or data.get("inputSchema") or {"type": "object", "properties": {}},
        )


class BaseTool(ABC):
    """Abstract base class for all tools.

    ``execute`` may be a plain method or a coroutine function. Plain methods
    are run in a worker thread by the executor.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Tool name used in function calls."""

    @property
    @abstractmethod
    def description(self) -> str:
        """Description of what the tool does."""

    @property
    def parameters(self) -> dict[str, Any]:
        """Per-argument schema in shorthand form.

        Each entry is a JSON schema for one argument, optionally carrying
        ``"required": True``. Tools that need a full schema override
        ``parameters_schema`` instead.
        """
        return {}

    @abstractmethod
    def execute(self, **kwargs: Any) -> ToolResult | Awaitable[ToolResult]:
        """Execute the tool with the given arguments."""

    def parameters_schema(self) -> dict[str, Any]:
        """JSON schema for the tool's arguments."""
        properties = {}
        required_fields = []
        for key, value in self.parameters.items():
            properties[key] = {k: v for k, v in value.items() if k != "required"}
            if value.get("required", False):
                required_fields.append(key)

        return {
            "type": "object",
            "properties": properties,
            "required": required_fields,
        }

    def descriptor(self) -> ToolDescriptor:
        return ToolDescriptor(
            name=self.name,
            description=self.description,
            input_schema=self.parameters_schema(),
        )

    def to_anthropic_tool(self) -> dict[str, Any]:
        return self.descriptor().to_anthropic_tool()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r}>"
