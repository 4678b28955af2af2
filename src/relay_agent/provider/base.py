"""LLM provider contract.

A provider turns an ``LLMRequest`` into either a complete ``LLMResponse`` or
an async stream of ``StreamEvent`` objects. Failures are raised as
``relay_agent.errors.LLMError`` subclasses so the retry wrapper can classify
them.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, AsyncIterator, Union

if TYPE_CHECKING:
    from relay_agent.agent.message import Message, MessagePart
    from relay_agent.tools.base import ToolDescriptor


class FinishReason(Enum):
    """Why the model stopped generating."""

    STOP = "stop"
    TOOL_CALLS = "tool_calls"
    MAX_TOKENS = "max_tokens"
    ERROR = "error"


@dataclass
class Usage:
    """Token accounting for one call."""

    input_tokens: int = 0
    output_tokens: int = 0

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )


@dataclass
class LLMRequest:
    """Everything the model needs for one step."""

    model: str
    messages: list["Message"]
    system_prompt: str = ""
    tools: list["ToolDescriptor"] = field(default_factory=list)
    max_tokens: int = 16384
    temperature: float | None = None
    top_p: float | None = None


@dataclass
class LLMResponse:
    """A complete model response."""

    content: list["MessagePart"]
    finish_reason: FinishReason = FinishReason.STOP
    usage: Usage = field(default_factory=Usage)


# =============================================================================
# Stream events
# =============================================================================


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ToolCallStart:
    id: str
    name: str


@dataclass(frozen=True)
class ToolCallDelta:
    """A fragment of a tool call's JSON argument payload."""

    id: str
    partial: str


@dataclass(frozen=True)
class ToolCallEnd:
    id: str


@dataclass(frozen=True)
class Finish:
    reason: FinishReason = FinishReason.STOP
    usage: Usage = field(default_factory=Usage)


@dataclass(frozen=True)
class StreamError:
    """In-band error reported by the backend mid-stream."""

    message: str
    retryable: bool = True


StreamEvent = Union[TextDelta, ToolCallStart, ToolCallDelta, ToolCallEnd, Finish, StreamError]


class BaseProvider(ABC):
    """Abstract LLM provider."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name."""

    @abstractmethod
    async def complete(self, request: LLMRequest) -> LLMResponse:
        """Send a request and wait for the full response.

        Raises:
            NetworkError, ApiError, InvalidResponseError
        """

    @abstractmethod
    def stream(self, request: LLMRequest) -> AsyncIterator[StreamEvent]:
        """Send a request and iterate over incremental events.

        Implementations are async generators.
        """

    def format_tool(self, tool: "ToolDescriptor") -> dict[str, Any]:
        """Convert a descriptor to the provider's tool format.

        The default is the Anthropic format; other providers override this.
        """
        return tool.to_anthropic_tool()
