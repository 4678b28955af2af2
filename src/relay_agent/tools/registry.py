"""Tool registry."""

from __future__ import annotations

import threading
from typing import Iterator

from .base import BaseTool, ToolDescriptor


class ToolRegistry:
    """Name to tool lookup table.

    Tool instances are shared, never copied, so an adapter and the registry
    can hold the same object. Reads and mutations are serialised by one
    re-entrant lock so a registry can be shared by loops in several threads.
    """

    def __init__(self, tools: list[BaseTool] | None = None) -> None:
        self._tools: dict[str, BaseTool] = {}
        self._lock = threading.RLock()
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: BaseTool) -> BaseTool:
        """Register a tool, replacing any tool with the same name.

        Returns:
            The registered tool (for decorator-style chaining)
        """
        tool_name = tool.name
        if not tool_name:
            raise ValueError(f"Tool {type(tool).__name__} must have a non-empty name")

        with self._lock:
            # Re-registration keeps the original slot so list() order is stable
            self._tools[tool_name] = tool
        return tool

    def unregister(self, name: str) -> BaseTool | None:
        """Remove a tool. Returns the removed tool or None."""
        with self._lock:
            return self._tools.pop(name, None)

    def get(self, name: str) -> BaseTool | None:
        with self._lock:
            return self._tools.get(name)

    def list(self) -> list[BaseTool]:
        """All tools in registration order."""
        with self._lock:
            return list(self._tools.values())

    def names(self) -> list[str]:
        with self._lock:
            return list(self._tools)

    def describe_all(self) -> list[ToolDescriptor]:
        """Descriptors for inclusion in the next model request."""
        return [tool.descriptor() for tool in self.list()]

    def clear(self) -> None:
        with self._lock:
            self._tools.clear()

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._tools

    def __len__(self) -> int:
        with self._lock:
            return len(self._tools)

    def __iter__(self) -> Iterator[BaseTool]:
        return iter(self.list())

    def __repr__(self) -> str:
        return f"ToolRegistry(tools={self.names()!r})"
