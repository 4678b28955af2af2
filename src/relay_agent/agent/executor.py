"""Tool executor - runs the tool calls requested by the model."""

from __future__ import annotations

import asyncio
import inspect
import time
from dataclasses import dataclass
from typing import Any, Callable

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError
from rich.console import Console

from relay_agent.errors import (
    ExecutionFailedError,
    InvalidArgumentsError,
    ToolError,
    ToolNotFoundError,
)
from relay_agent.tools import BaseTool, ToolDescriptor, ToolRegistry, ToolResult

from .message import ToolCallPart, ToolResultPart
from .permissions import Permission, PermissionManager

_console = Console(stderr=True)

CallStartedHook = Callable[[ToolCallPart], Any]
ResultHook = Callable[[ToolCallPart, ToolResultPart, float], Any]


@dataclass(frozen=True)
class ExecutionContext:
    """Where a tool call comes from."""

    session_id: str
    message_id: str = ""
    step: int = 0


class ToolExecutor:
    """Executes tool calls behind the permission gate.

    Every call yields exactly one ``ToolResultPart`` carrying the call's own
    id. Tool failures of any kind become error-flagged results; only
    cancellation propagates.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        permission_manager: PermissionManager | None = None,
        max_output_length: int = 10_000,
        max_concurrency: int = 1,
        validate_arguments: bool = True,
    ) -> None:
        """
        Args:
            registry: Tools available to the model
            permission_manager: Gate consulted before every call. Defaults to
                a manager without rules, which denies everything.
            max_output_length: Longer outputs are truncated
            max_concurrency: Calls of one batch run concurrently up to this
                bound; 1 runs them sequentially
            validate_arguments: Validate arguments against the tool schema
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self.registry = registry
        self.permission = permission_manager or PermissionManager()
        self.max_output_length = max_output_length
        self.max_concurrency = max_concurrency
        self.validate_arguments = validate_arguments

    def get_tool_definitions(self) -> list[ToolDescriptor]:
        return self.registry.describe_all()

    # --- single call ---

    async def execute(self, call: ToolCallPart, context: ExecutionContext) -> ToolResultPart:
        """Run one call without consulting the permission gate."""
        tool = self.registry.get(call.name)
        if tool is None:
            return self._error_result(call, ToolNotFoundError(f"Tool not found: {call.name}"))

        try:
            self._check_arguments(tool, call)
            result = await self._invoke(tool, call.arguments)
        except ToolError as e:
            return self._error_result(call, e)
        except TypeError as e:
            return self._error_result(call, self._signature_error(call, e))
        except Exception as e:
            return self._error_result(
                call, ExecutionFailedError(f"Error executing {call.name}: {e}")
            )

        return ToolResultPart(
            tool_call_id=call.id,
            output=self._format_result(result),
            is_error=not result.success,
        )

    def _check_arguments(self, tool: BaseTool, call: ToolCallPart) -> None:
        if call.argument_error is not None:
            raise InvalidArgumentsError(
                f"Invalid arguments for {call.name}: {call.argument_error}"
            )
        if not self.validate_arguments:
            return

        try:
            validator = Draft202012Validator(tool.parameters_schema())
            errors = sorted(validator.iter_errors(call.arguments), key=lambda e: list(e.path))
        except SchemaError as e:
            raise ExecutionFailedError(
                f"Tool '{call.name}' has an invalid parameter schema: {e.message}"
            ) from e

        if errors:
            details = "; ".join(
                f"{'/'.join(str(p) for p in err.path) or '<root>'}: {err.message}"
                for err in errors
            )
            raise InvalidArgumentsError(f"Invalid arguments for {call.name}: {details}")

    async def _invoke(self, tool: BaseTool, arguments: dict[str, Any]) -> ToolResult:
        if inspect.iscoroutinefunction(tool.execute):
            result: Any = await tool.execute(**arguments)
        else:
            # Sync tools may block on I/O; keep them off the event loop
            result = await asyncio.to_thread(tool.execute, **arguments)
            if inspect.isawaitable(result):
                result = await result

        if isinstance(result, ToolResult):
            return result
        return ToolResult(output="" if result is None else str(result))

    def _signature_error(self, call: ToolCallPart, error: TypeError) -> ToolError:
        error_msg = str(error)
        if "argument" in error_msg:
            return InvalidArgumentsError(
                f"Tool '{call.name}' called with invalid parameters: {error_msg}\n"
                f"Provided parameters: {list(call.arguments.keys())}\n"
                f"Please make sure to provide all required parameters."
            )
        return ExecutionFailedError(f"Error executing {call.name}: {error_msg}")

    def _error_result(self, call: ToolCallPart, error: ToolError) -> ToolResultPart:
        return ToolResultPart(
            tool_call_id=call.id,
            output=self._truncate(str(error), "error output"),
            is_error=True,
        )

    def _format_result(self, result: ToolResult) -> str:
        """Format a tool result for the model."""
        if result.success:
            return self._truncate(result.output, "output")
        error_output = f"Error: {result.error}\n{result.output}".strip()
        return self._truncate(error_output, "error output")

    def _truncate(self, text: str, label: str) -> str:
        if len(text) > self.max_output_length:
            truncated_chars = len(text) - self.max_output_length
            return (
                text[: self.max_output_length]
                + f"\n\n... ({label} truncated, {truncated_chars:,} characters omitted)"
            )
        return text

    # --- batches ---

    async def execute_batch(
        self,
        calls: list[ToolCallPart],
        context: ExecutionContext,
        on_call_started: CallStartedHook | None = None,
        on_result: ResultHook | None = None,
    ) -> list[ToolResultPart]:
        """Gate and run a batch of calls.

        Returns one result per call, in the order the calls were given.
        """
        if self.max_concurrency == 1 or len(calls) <= 1:
            results = []
            for call in calls:
                results.append(await self._gated(call, context, on_call_started, on_result))
            return results

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def bounded(call: ToolCallPart) -> ToolResultPart:
            async with semaphore:
                return await self._gated(call, context, on_call_started, on_result)

        return list(await asyncio.gather(*(bounded(call) for call in calls)))

    async def _gated(
        self,
        call: ToolCallPart,
        context: ExecutionContext,
        on_call_started: CallStartedHook | None,
        on_result: ResultHook | None,
    ) -> ToolResultPart:
        await _call_hook(on_call_started, call)
        start = time.time()

        # Unknown tools are reported as such; there is nothing to gate
        if self.registry.get(call.name) is None:
            result = self._error_result(call, ToolNotFoundError(f"Tool not found: {call.name}"))
            await _call_hook(on_result, call, result, (time.time() - start) * 1000)
            return result

        decision = await self.permission.check(call.name, call.arguments, context.session_id)
        if decision is Permission.ALLOW:
            result = await self.execute(call, context)
        else:
            result = ToolResultPart(
                tool_call_id=call.id,
                output=f"Permission denied for tool '{call.name}'. "
                       "The call was not executed.",
                is_error=True,
            )

        await _call_hook(on_result, call, result, (time.time() - start) * 1000)
        return result


async def _call_hook(hook: Callable[..., Any] | None, *args: Any) -> None:
    if hook is None:
        return
    try:
        outcome = hook(*args)
        if inspect.isawaitable(outcome):
            await outcome
    except Exception as e:
        _console.print(f"[yellow][ToolExecutor][/yellow] Hook error: {e}")
