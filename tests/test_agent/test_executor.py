"""Tests for the tool executor."""

import asyncio
import json

import pytest

from relay_agent.agent.executor import ExecutionContext, ToolExecutor
from relay_agent.agent.message import ToolCallPart
from relay_agent.agent.permissions import PermissionManager
from relay_agent.errors import ExecutionFailedError, InvalidArgumentsError
from relay_agent.tools import BaseTool, ToolRegistry, ToolResult, tool

CONTEXT = ExecutionContext(session_id="s1", message_id="m1", step=1)


class FlakyArgumentsTool(BaseTool):
    """Raises the tool error types directly."""

    @property
    def name(self):
        return "strict"

    @property
    def description(self):
        return "Rejects everything"

    @property
    def parameters(self):
        return {"mode": {"type": "string", "required": True}}

    def execute(self, mode):
        if mode == "args":
            raise InvalidArgumentsError("mode 'args' is not supported")
        if mode == "fail":
            raise ExecutionFailedError("backend unavailable")
        if mode == "soft":
            return ToolResult(output="partial output", error="soft failure")
        return ToolResult(output=f"mode={mode}")


class TestExecute:
    """execute() tests."""

    @pytest.mark.asyncio
    async def test_success(self, registry, allow_all):
        executor = ToolExecutor(registry, allow_all)
        call = ToolCallPart(id="c1", name="get_weather", arguments={"location": "Tokyo"})

        result = await executor.execute(call, CONTEXT)

        assert result.tool_call_id == "c1"
        assert not result.is_error
        assert json.loads(result.output) == {"temp": 22, "condition": "sunny"}

    @pytest.mark.asyncio
    async def test_async_tool(self, registry, allow_all):
        executor = ToolExecutor(registry, allow_all)
        result = await executor.execute(ToolCallPart(id="c1", name="echo", arguments={"text": "hi"}), CONTEXT)
        assert result.output == "hi"
        assert not result.is_error

    @pytest.mark.asyncio
    async def test_unknown_tool(self, registry):
        executor = ToolExecutor(registry)
        result = await executor.execute(ToolCallPart(id="c9", name="teleport"), CONTEXT)

        assert result.tool_call_id == "c9"
        assert result.is_error
        assert "teleport" in result.output
        assert result.output == "Tool not found: teleport"

    @pytest.mark.asyncio
    async def test_schema_violation_is_not_invoked(self, registry, weather_calls):
        executor = ToolExecutor(registry)
        call = ToolCallPart(id="c1", name="get_weather", arguments={"location": 42})

        result = await executor.execute(call, CONTEXT)

        assert result.is_error
        assert result.output.startswith("Invalid arguments for get_weather")
        assert weather_calls == []

    @pytest.mark.asyncio
    async def test_missing_required_argument(self, registry, weather_calls):
        executor = ToolExecutor(registry)
        result = await executor.execute(ToolCallPart(id="c1", name="get_weather"), CONTEXT)

        assert result.is_error
        assert "location" in result.output
        assert weather_calls == []

    @pytest.mark.asyncio
    async def test_argument_error_is_not_invoked(self, registry, weather_calls):
        executor = ToolExecutor(registry)
        call = ToolCallPart(id="c1", name="get_weather", argument_error="truncated payload")

        result = await executor.execute(call, CONTEXT)

        assert result.is_error
        assert result.output == "Invalid arguments for get_weather: truncated payload"
        assert weather_calls == []

    @pytest.mark.asyncio
    async def test_raising_tool(self, registry):
        executor = ToolExecutor(registry)
        result = await executor.execute(ToolCallPart(id="c1", name="broken"), CONTEXT)

        assert result.is_error
        assert result.output == "Error executing broken: disk on fire"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "mode, expected",
        [
            ("args", "mode 'args' is not supported"),
            ("fail", "backend unavailable"),
            ("soft", "Error: soft failure\npartial output"),
        ],
    )
    async def test_tool_error_kinds(self, mode, expected):
        executor = ToolExecutor(ToolRegistry([FlakyArgumentsTool()]))
        result = await executor.execute(ToolCallPart(id="c1", name="strict", arguments={"mode": mode}), CONTEXT)

        assert result.is_error
        assert result.output == expected

    @pytest.mark.asyncio
    async def test_unexpected_keyword_without_validation(self):
        executor = ToolExecutor(ToolRegistry([FlakyArgumentsTool()]), validate_arguments=False)
        call = ToolCallPart(id="c1", name="strict", arguments={"mode": "x", "extra": 1})

        result = await executor.execute(call, CONTEXT)

        assert result.is_error
        assert "called with invalid parameters" in result.output

    @pytest.mark.asyncio
    async def test_truncation(self):
        @tool
        def chatty() -> str:
            return "x" * 50

        executor = ToolExecutor(ToolRegistry([chatty]), max_output_length=10)
        result = await executor.execute(ToolCallPart(id="c1", name="chatty"), CONTEXT)

        assert result.output.startswith("x" * 10)
        assert "(output truncated, 40 characters omitted)" in result.output
        assert not result.is_error

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self):
        started = asyncio.Event()

        @tool
        async def slow() -> str:
            started.set()
            await asyncio.sleep(10)
            return "never"

        executor = ToolExecutor(ToolRegistry([slow]))
        task = asyncio.create_task(executor.execute(ToolCallPart(id="c1", name="slow"), CONTEXT))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task


class TestExecuteBatch:
    """execute_batch() tests."""

    @pytest.mark.asyncio
    async def test_one_result_per_call_in_order(self, registry, allow_all):
        executor = ToolExecutor(registry, allow_all)
        calls = [
            ToolCallPart(id="a", name="echo", arguments={"text": "1"}),
            ToolCallPart(id="b", name="missing"),
            ToolCallPart(id="c", name="broken"),
            ToolCallPart(id="d", name="echo", arguments={"text": "4"}),
        ]

        results = await executor.execute_batch(calls, CONTEXT)

        assert [r.tool_call_id for r in results] == ["a", "b", "c", "d"]
        assert [r.is_error for r in results] == [False, True, True, False]

    @pytest.mark.asyncio
    async def test_denied_calls_are_not_executed(self, registry, weather_calls):
        executor = ToolExecutor(registry, PermissionManager().allow("echo"))
        calls = [
            ToolCallPart(id="a", name="get_weather", arguments={"location": "Tokyo"}),
            ToolCallPart(id="b", name="echo", arguments={"text": "ok"}),
        ]

        results = await executor.execute_batch(calls, CONTEXT)

        assert results[0].is_error
        assert results[0].output.startswith("Permission denied for tool 'get_weather'")
        assert results[1].output == "ok"
        assert weather_calls == []

    @pytest.mark.asyncio
    async def test_default_gate_denies_everything(self, registry):
        executor = ToolExecutor(registry)
        results = await executor.execute_batch([ToolCallPart(id="a", name="echo", arguments={"text": "x"})], CONTEXT)
        assert results[0].is_error

    @pytest.mark.asyncio
    async def test_unknown_tool_reported_before_gate(self, registry):
        asked = []
        manager = PermissionManager(confirm=lambda *args: asked.append(args) or True).ask("*")
        executor = ToolExecutor(registry, manager)
        seen = []

        results = await executor.execute_batch(
            [ToolCallPart(id="a", name="teleport", arguments={"to": "Mars"})],
            CONTEXT,
            on_result=lambda call, result, ms: seen.append(result),
        )

        assert results[0].is_error
        assert results[0].output == "Tool not found: teleport"
        assert seen == results
        assert asked == []
        assert manager.get_history() == []

    @pytest.mark.asyncio
    async def test_duplicate_ids_are_routed_by_id(self, registry, allow_all):
        executor = ToolExecutor(registry, allow_all)
        calls = [
            ToolCallPart(id="dup", name="echo", arguments={"text": "first"}),
            ToolCallPart(id="dup", name="echo", arguments={"text": "second"}),
        ]

        results = await executor.execute_batch(calls, CONTEXT)

        assert [(r.tool_call_id, r.output) for r in results] == [("dup", "first"), ("dup", "second")]

    @pytest.mark.asyncio
    async def test_bounded_parallel_keeps_order(self, allow_all):
        active = 0
        peak = 0

        @tool
        async def nap(seconds: float) -> str:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(seconds)
            active -= 1
            return str(seconds)

        executor = ToolExecutor(ToolRegistry([nap]), allow_all, max_concurrency=2)
        calls = [
            ToolCallPart(id=str(i), name="nap", arguments={"seconds": s})
            for i, s in enumerate([0.03, 0.01, 0.02, 0.0])
        ]

        results = await executor.execute_batch(calls, CONTEXT)

        assert [r.tool_call_id for r in results] == ["0", "1", "2", "3"]
        assert [r.output for r in results] == ["0.03", "0.01", "0.02", "0.0"]
        assert peak == 2

    @pytest.mark.asyncio
    async def test_hooks(self, registry, allow_all):
        started = []
        finished = []

        async def on_result(call, result, duration_ms):
            finished.append((call.id, result.is_error, duration_ms >= 0))

        executor = ToolExecutor(registry, allow_all)
        await executor.execute_batch(
            [ToolCallPart(id="a", name="echo", arguments={"text": "x"}), ToolCallPart(id="b", name="nope")],
            CONTEXT,
            on_call_started=lambda call: started.append(call.id),
            on_result=on_result,
        )

        assert started == ["a", "b"]
        assert finished == [("a", False, True), ("b", True, True)]

    @pytest.mark.asyncio
    async def test_failing_hook_does_not_break_batch(self, registry, allow_all):
        def explode(call):
            raise RuntimeError("observer bug")

        executor = ToolExecutor(registry, allow_all)
        results = await executor.execute_batch(
            [ToolCallPart(id="a", name="echo", arguments={"text": "x"})],
            CONTEXT,
            on_call_started=explode,
        )
        assert results[0].output == "x"

    def test_invalid_concurrency(self, registry):
        with pytest.raises(ValueError):
            ToolExecutor(registry, max_concurrency=0)

    def test_tool_definitions(self, registry):
        names = [d.name for d in ToolExecutor(registry).get_tool_definitions()]
        assert names == ["get_weather", "echo", "broken"]
