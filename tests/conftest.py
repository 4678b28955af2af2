"""Shared test fixtures: a scripted provider and a few tools."""

import asyncio

import pytest

from relay_agent.agent.message import TextPart, ToolCallPart
from relay_agent.agent.permissions import PermissionManager
from relay_agent.agent.retry import RetryPolicy
from relay_agent.provider.base import (
    BaseProvider,
    Finish,
    FinishReason,
    LLMRequest,
    LLMResponse,
    TextDelta,
    ToolCallDelta,
    ToolCallEnd,
    ToolCallStart,
    Usage,
)
from relay_agent.tools import ToolRegistry, tool


class ScriptedProvider(BaseProvider):
    """Replays canned answers in order.

    ``responses`` feed ``complete``, ``streams`` feed ``stream``. An entry
    that is an exception is raised instead; inside a stream script an
    exception is raised at that point of the stream.
    """

    def __init__(self, responses=None, streams=None, delay=0.0):
        self.responses = list(responses or [])
        self.streams = list(streams or [])
        self.delay = delay
        self.requests: list[LLMRequest] = []

    @property
    def name(self) -> str:
        return "scripted"

    async def complete(self, request):
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def stream(self, request):
        self.requests.append(request)
        item = self.streams.pop(0)
        if isinstance(item, BaseException):
            raise item
        for event in item:
            if self.delay:
                await asyncio.sleep(self.delay)
            if isinstance(event, BaseException):
                raise event
            yield event


def text_response(text, input_tokens=10, output_tokens=5):
    return LLMResponse(
        content=[TextPart(text=text)],
        finish_reason=FinishReason.STOP,
        usage=Usage(input_tokens, output_tokens),
    )


def tool_call_response(name, arguments, call_id="call_1", text=None):
    content = [TextPart(text=text)] if text else []
    content.append(ToolCallPart(id=call_id, name=name, arguments=arguments))
    return LLMResponse(
        content=content,
        finish_reason=FinishReason.TOOL_CALLS,
        usage=Usage(10, 5),
    )


def text_stream(*chunks):
    events = [TextDelta(text=chunk) for chunk in chunks]
    events.append(Finish(reason=FinishReason.STOP, usage=Usage(10, len(chunks))))
    return events


def tool_call_stream(name, argument_chunks, call_id="call_1"):
    events = [ToolCallStart(id=call_id, name=name)]
    events.extend(ToolCallDelta(id=call_id, partial=chunk) for chunk in argument_chunks)
    events.append(ToolCallEnd(id=call_id))
    events.append(Finish(reason=FinishReason.TOOL_CALLS, usage=Usage(10, 5)))
    return events


@pytest.fixture
def weather_calls():
    """Arguments every get_weather invocation received."""
    return []


@pytest.fixture
def registry(weather_calls):
    @tool(description="Get the current weather for a location")
    def get_weather(location: str) -> dict:
        weather_calls.append(location)
        return {"temp": 22, "condition": "sunny"}

    @tool(description="Echo the given text")
    async def echo(text: str) -> str:
        return text

    @tool(description="Always fails")
    def broken() -> str:
        raise RuntimeError("disk on fire")

    return ToolRegistry([get_weather, echo, broken])


@pytest.fixture
def allow_all():
    return PermissionManager().allow("*")


@pytest.fixture
def fast_retry():
    return RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0)
