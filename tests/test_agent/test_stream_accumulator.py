"""Tests for stream accumulation and argument parsing."""

import pytest

from relay_agent.agent.loop import StreamAccumulator, parse_arguments
from relay_agent.agent.message import TextPart, ToolCallPart, ToolResultPart
from relay_agent.errors import ErrorCategory, InvalidResponseError, StreamFailedError
from relay_agent.provider.base import (
    Finish,
    FinishReason,
    LLMResponse,
    StreamError,
    TextDelta,
    ToolCallDelta,
    ToolCallEnd,
    ToolCallStart,
    Usage,
)


def feed(*events):
    accumulator = StreamAccumulator()
    for event in events:
        accumulator.add(event)
    return accumulator


class TestParseArguments:
    """parse_arguments tests."""

    def test_object(self):
        assert parse_arguments('{"location": "Tokyo"}') == ({"location": "Tokyo"}, None)

    @pytest.mark.parametrize("payload", ["", "   "])
    def test_empty_payload_means_no_arguments(self, payload):
        assert parse_arguments(payload) == ({}, None)

    def test_invalid_json(self):
        arguments, error = parse_arguments('{"location": "Tok')
        assert arguments == {}
        assert error.startswith("arguments are not valid JSON")

    def test_non_object(self):
        arguments, error = parse_arguments("[1, 2]")
        assert arguments == {}
        assert error == "arguments must be a JSON object, got list"


class TestStreamAccumulator:
    """StreamAccumulator tests."""

    def test_text_deltas_are_concatenated(self):
        acc = feed(TextDelta("Hel"), TextDelta("lo"), Finish(FinishReason.STOP, Usage(3, 2)))

        assert acc.parts() == [TextPart(text="Hello")]
        assert acc.finished
        assert acc.finish_reason is FinishReason.STOP
        assert acc.usage == Usage(3, 2)

    def test_arguments_parsed_at_end_marker(self):
        acc = feed(
            ToolCallStart(id="c1", name="get_weather"),
            ToolCallDelta(id="c1", partial='{"loc'),
            ToolCallDelta(id="c1", partial='ation": '),
            ToolCallDelta(id="c1", partial='"Tokyo"}'),
            ToolCallEnd(id="c1"),
            Finish(FinishReason.TOOL_CALLS),
        )

        assert acc.parts() == [
            ToolCallPart(id="c1", name="get_weather", arguments={"location": "Tokyo"}),
        ]

    def test_parts_keep_start_order(self):
        acc = feed(
            TextDelta("Checking "),
            ToolCallStart(id="a", name="first"),
            ToolCallStart(id="b", name="second"),
            ToolCallDelta(id="b", partial='{"n": 2}'),
            ToolCallDelta(id="a", partial='{"n": 1}'),
            ToolCallEnd(id="b"),
            ToolCallEnd(id="a"),
            TextDelta("done"),
            Finish(),
        )

        parts = acc.parts()
        assert parts[0] == TextPart(text="Checking ")
        assert [(p.id, p.arguments) for p in parts[1:3]] == [("a", {"n": 1}), ("b", {"n": 2})]
        assert parts[3] == TextPart(text="done")

    def test_call_without_arguments(self):
        acc = feed(ToolCallStart(id="c1", name="now"), ToolCallEnd(id="c1"), Finish())
        assert acc.parts() == [ToolCallPart(id="c1", name="now")]

    def test_invalid_payload_becomes_argument_error(self):
        acc = feed(
            ToolCallStart(id="c1", name="get_weather"),
            ToolCallDelta(id="c1", partial='{"location": '),
            ToolCallEnd(id="c1"),
            Finish(),
        )

        part = acc.parts()[0]
        assert part.arguments == {}
        assert part.argument_error.startswith("arguments are not valid JSON")

    def test_missing_end_marker_at_finish(self):
        acc = feed(
            ToolCallStart(id="c1", name="get_weather"),
            ToolCallDelta(id="c1", partial='{"location": "Tokyo"}'),
            Finish(FinishReason.MAX_TOKENS),
        )

        part = acc.parts()[0]
        assert part.id == "c1"
        assert "incomplete tool call" in part.argument_error

    def test_unfinished_stream_parts(self):
        acc = feed(ToolCallStart(id="c1", name="get_weather"))

        assert not acc.finished
        assert "no end marker" in acc.parts()[0].argument_error

    def test_ignored_events(self):
        acc = feed(
            ToolCallDelta(id="ghost", partial="{}"),
            ToolCallStart(id="c1", name="first"),
            ToolCallStart(id="c1", name="duplicate"),
            ToolCallEnd(id="c1"),
            ToolCallEnd(id="c1"),
            ToolCallEnd(id="ghost"),
            Finish(),
            TextDelta("after finish"),
        )

        assert acc.parts() == [ToolCallPart(id="c1", name="first")]

    def test_empty_text_is_dropped(self):
        acc = feed(TextDelta(""), Finish())
        assert acc.parts() == []

    def test_stream_error_raises(self):
        acc = StreamAccumulator()
        with pytest.raises(StreamFailedError) as exc_info:
            acc.add(StreamError(message="overloaded"))
        assert exc_info.value.category is ErrorCategory.SERVER

        with pytest.raises(StreamFailedError) as exc_info:
            acc.add(StreamError(message="bad input", retryable=False))
        assert exc_info.value.category is ErrorCategory.API

    def test_reset(self):
        acc = feed(TextDelta("stale"), Finish())
        acc.reset()

        assert acc.parts() == []
        assert not acc.finished
        assert acc.finish_reason is None


class TestLoad:
    """Loading complete responses."""

    def test_load_response(self):
        acc = StreamAccumulator()
        call = ToolCallPart(id="c1", name="echo", arguments={"text": "x"})
        acc.load(LLMResponse(
            content=[TextPart(text="Sure."), call],
            finish_reason=FinishReason.TOOL_CALLS,
            usage=Usage(7, 3),
        ))

        assert acc.parts() == [TextPart(text="Sure."), call]
        assert acc.finish_reason is FinishReason.TOOL_CALLS
        assert acc.usage == Usage(7, 3)

    def test_tool_result_in_response_is_rejected(self):
        acc = StreamAccumulator()
        with pytest.raises(InvalidResponseError):
            acc.load(LLMResponse(content=[ToolResultPart(tool_call_id="c1", output="?")]))
