"""Claude provider implementation."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any, AsyncIterator

import anthropic
from anthropic import AsyncAnthropic

from relay_agent.agent.message import Message, MessagePart, part_from_anthropic
from relay_agent.errors import (
    ApiError,
    AuthenticationError,
    InvalidResponseError,
    LLMError,
    LLMTimeoutError,
    NetworkError,
    RateLimitError,
)

from .base import (
    BaseProvider,
    Finish,
    FinishReason,
    LLMRequest,
    LLMResponse,
    StreamEvent,
    TextDelta,
    ToolCallDelta,
    ToolCallEnd,
    ToolCallStart,
    Usage,
)

if TYPE_CHECKING:
    from relay_agent.config import Config

_FINISH_REASONS = {
    "end_turn": FinishReason.STOP,
    "stop_sequence": FinishReason.STOP,
    "tool_use": FinishReason.TOOL_CALLS,
    "max_tokens": FinishReason.MAX_TOKENS,
}


def translate_error(error: anthropic.APIError) -> LLMError:
    """Map an Anthropic SDK exception onto the relay_agent taxonomy."""
    message = getattr(error, "message", None) or str(error)
    if isinstance(error, anthropic.APITimeoutError):
        return LLMTimeoutError(f"Claude API request timed out: {message}")
    if isinstance(error, anthropic.APIConnectionError):
        return NetworkError(f"Failed to reach Claude API: {message}")
    if isinstance(error, anthropic.RateLimitError):
        return RateLimitError(f"Claude API rate limit reached: {message}")
    if isinstance(error, (anthropic.AuthenticationError, anthropic.PermissionDeniedError)):
        return AuthenticationError(
            f"Claude API rejected the credentials: {message}",
            status_code=error.status_code,
        )
    if isinstance(error, anthropic.APIStatusError):
        return ApiError(f"Claude API error: {message}", status_code=error.status_code)
    if isinstance(error, anthropic.APIResponseValidationError):
        return InvalidResponseError(f"Unexpected Claude API response: {message}")
    return ApiError(f"Claude API error: {message}")


class ClaudeProvider(BaseProvider):
    """Anthropic Claude API provider.

    SDK-level retries are disabled; retrying is the agent loop's job.
    """

    @property
    def name(self) -> str:
        return "claude"

    def __init__(
        self,
        config: Config | None = None,
        client: AsyncAnthropic | None = None,
    ) -> None:
        if client is None:
            api_key = (config.get("api_key") if config else None) or os.environ.get(
                "ANTHROPIC_API_KEY"
            )
            if not api_key:
                raise AuthenticationError(
                    "ANTHROPIC_API_KEY environment variable is not set.",
                    status_code=None,
                )
            client = AsyncAnthropic(
                api_key=api_key,
                max_retries=0,
                timeout=config.get("request_timeout", 600.0) if config else 600.0,
            )
        self.client = client

    def _build_messages(self, messages: list[Message]) -> list[dict[str, Any]]:
        """Anthropic requires alternating roles; merge consecutive same-role turns."""
        built: list[dict[str, Any]] = []
        for message in messages:
            api = message.to_api_format()
            if not api["content"]:
                continue
            if built and built[-1]["role"] == api["role"]:
                built[-1]["content"].extend(api["content"])
            else:
                built.append(api)
        return built

    def _build_kwargs(self, request: LLMRequest) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": request.model,
            "max_tokens": request.max_tokens,
            "messages": self._build_messages(request.messages),
        }

        if request.system_prompt:
            kwargs["system"] = request.system_prompt

        if request.tools:
            kwargs["tools"] = [self.format_tool(tool) for tool in request.tools]

        if request.temperature is not None:
            kwargs["temperature"] = request.temperature

        if request.top_p is not None:
            kwargs["top_p"] = request.top_p

        return kwargs

    async def complete(self, request: LLMRequest) -> LLMResponse:
        """Call Claude API."""
        try:
            response = await self.client.messages.create(**self._build_kwargs(request))
        except anthropic.APIError as e:
            raise translate_error(e) from e

        content: list[MessagePart] = []
        for block in response.content:
            if getattr(block, "type", None) not in ("text", "tool_use"):
                # thinking blocks and the like are not part of the transcript
                continue
            try:
                content.append(part_from_anthropic(block))
            except ValueError as e:
                raise InvalidResponseError(str(e)) from e

        return LLMResponse(
            content=content,
            finish_reason=_FINISH_REASONS.get(response.stop_reason or "", FinishReason.STOP),
            usage=Usage(
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
            ),
        )

    async def stream(self, request: LLMRequest) -> AsyncIterator[StreamEvent]:
        """Call Claude API with server-sent events."""
        usage = Usage()
        stop_reason: str | None = None
        # content block index -> tool call id
        tool_blocks: dict[int, str] = {}

        try:
            stream = await self.client.messages.create(**self._build_kwargs(request), stream=True)
            # Leaving the block closes the response, also when iteration stops early
            async with stream as events:
                async for event in events:
                    if event.type == "message_start":
                        usage.input_tokens = event.message.usage.input_tokens

                    elif event.type == "content_block_start":
                        block = event.content_block
                        if block.type == "tool_use":
                            tool_blocks[event.index] = block.id
                            yield ToolCallStart(id=block.id, name=block.name)
                        elif block.type == "text" and block.text:
                            yield TextDelta(text=block.text)

                    elif event.type == "content_block_delta":
                        delta = event.delta
                        if delta.type == "text_delta":
                            yield TextDelta(text=delta.text)
                        elif delta.type == "input_json_delta" and event.index in tool_blocks:
                            yield ToolCallDelta(id=tool_blocks[event.index], partial=delta.partial_json)

                    elif event.type == "content_block_stop":
                        if event.index in tool_blocks:
                            yield ToolCallEnd(id=tool_blocks[event.index])

                    elif event.type == "message_delta":
                        stop_reason = event.delta.stop_reason
                        usage.output_tokens = event.usage.output_tokens

                    elif event.type == "message_stop":
                        yield Finish(
                            reason=_FINISH_REASONS.get(stop_reason or "", FinishReason.STOP),
                            usage=usage,
                        )
        except anthropic.APIError as e:
            raise translate_error(e) from e
