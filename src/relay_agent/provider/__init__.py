"""Provider module - LLM contract and implementations."""

from .base import (
    BaseProvider,
    Finish,
    FinishReason,
    LLMRequest,
    LLMResponse,
    StreamError,
    StreamEvent,
    TextDelta,
    ToolCallDelta,
    ToolCallEnd,
    ToolCallStart,
    Usage,
)
from .claude import ClaudeProvider, translate_error
from .registry import get_provider, register_provider, list_providers

__all__ = [
    "BaseProvider",
    "LLMRequest",
    "LLMResponse",
    "FinishReason",
    "Usage",
    # Stream events
    "StreamEvent",
    "TextDelta",
    "ToolCallStart",
    "ToolCallDelta",
    "ToolCallEnd",
    "Finish",
    "StreamError",
    # Implementations
    "ClaudeProvider",
    "translate_error",
    "get_provider",
    "register_provider",
    "list_providers",
]
