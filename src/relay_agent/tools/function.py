"""Plain Python callables as tools.

Usage:
    @tool(description="Get the current weather for a location")
    def get_weather(location: str, unit: str = "celsius") -> dict:
        ...

    registry.register(get_weather)
"""

import inspect
import json
from typing import Any, Awaitable, Callable

from .base import BaseTool, ToolResult

_JSON_TYPES: dict[Any, str] = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    dict: "object",
}


def schema_from_signature(func: Callable[..., Any]) -> dict[str, Any]:
    """Build a JSON schema from a function signature.

    Only builtin scalar and container annotations are mapped; anything else
    is left untyped.
    """
    properties: dict[str, Any] = {}
    required: list[str] = []
    for param_name, param in inspect.signature(func).parameters.items():
        if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            continue
        prop: dict[str, Any] = {}
        json_type = _JSON_TYPES.get(param.annotation)
        if json_type:
            prop["type"] = json_type
        if param.default is inspect.Parameter.empty:
            required.append(param_name)
        else:
            prop["default"] = param.default
        properties[param_name] = prop

    return {"type": "object", "properties": properties, "required": required}


def _to_result(value: Any) -> ToolResult:
    if isinstance(value, ToolResult):
        return value
    if isinstance(value, str):
        return ToolResult(output=value)
    if value is None:
        return ToolResult(output="")
    return ToolResult(output=json.dumps(value, ensure_ascii=False, default=str))


class FunctionTool(BaseTool):
    """Tool backed by a sync or async function.

    Return values are normalised: strings pass through, ``ToolResult`` is kept
    as is, anything else is JSON encoded.
    """

    def __init__(
        self,
        func: Callable[..., Any],
        name: str | None = None,
        description: str | None = None,
        schema: dict[str, Any] | None = None,
    ) -> None:
        self.func = func
        self._name = name or func.__name__
        self._description = description or inspect.getdoc(func) or f"Call {self._name}"
        self._schema = schema or schema_from_signature(func)

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    def parameters_schema(self) -> dict[str, Any]:
        return self._schema

    def execute(self, **kwargs: Any) -> ToolResult | Awaitable[ToolResult]:
        if inspect.iscoroutinefunction(self.func):
            return self._execute_async(**kwargs)
        return _to_result(self.func(**kwargs))

    async def _execute_async(self, **kwargs: Any) -> ToolResult:
        return _to_result(await self.func(**kwargs))


def tool(
    func: Callable[..., Any] | None = None,
    *,
    name: str | None = None,
    description: str | None = None,
    schema: dict[str, Any] | None = None,
) -> Any:
    """Decorator turning a function into a ``FunctionTool``.

    Works bare (``@tool``) or with arguments (``@tool(name=...)``).
    """

    def decorator(f: Callable[..., Any]) -> FunctionTool:
        return FunctionTool(f, name=name, description=description, schema=schema)

    if func is not None:
        return decorator(func)
    return decorator
