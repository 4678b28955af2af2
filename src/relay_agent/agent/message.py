"""Message parts and the immutable message model.

A message is a role plus an ordered tuple of typed parts. The role decides
which part kinds are legal: user and assistant messages carry text and tool
calls, tool messages carry only tool results.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Literal
from uuid import uuid4

from relay_agent.errors import InvariantViolation


class Role(Enum):
    """Conversation role of a message."""

    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class MessagePart(ABC):
    """Base class for message parts."""

    @property
    @abstractmethod
    def part_type(self) -> str:
        """Part type identifier."""

    @abstractmethod
    def to_api_format(self) -> dict[str, Any]:
        """Convert to an Anthropic content block."""

    @abstractmethod
    def to_dict(self) -> dict[str, Any]:
        """Convert to a serialisable dict."""

    @classmethod
    @abstractmethod
    def from_dict(cls, data: dict[str, Any]) -> "MessagePart":
        """Restore from a dict produced by ``to_dict``."""


@dataclass(frozen=True)
class TextPart(MessagePart):
    """Plain text."""

    text: str

    @property
    def part_type(self) -> Literal["text"]:
        return "text"

    def to_api_format(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}

    def to_dict(self) -> dict[str, Any]:
        return {"part_type": "text", "text": self.text}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TextPart":
        return cls(text=data["text"])


@dataclass(frozen=True)
class ToolCallPart(MessagePart):
    """A tool invocation requested by the model.

    ``argument_error`` is set when the argument payload could not be parsed
    (e.g. a truncated streamed payload). Such a call is never invoked.
    """

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    argument_error: str | None = None

    @property
    def part_type(self) -> Literal["tool_call"]:
        return "tool_call"

    def to_api_format(self) -> dict[str, Any]:
        return {
            "type": "tool_use",
            "id": self.id,
            "name": self.name,
            "input": self.arguments,
        }

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "part_type": "tool_call",
            "id": self.id,
            "name": self.name,
            "arguments": self.arguments,
        }
        if self.argument_error is not None:
            data["argument_error"] = self.argument_error
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolCallPart":
        return cls(
            id=data["id"],
            name=data["name"],
            arguments=data.get("arguments", {}),
            argument_error=data.get("argument_error"),
        )


@dataclass(frozen=True)
class ToolResultPart(MessagePart):
    """Outcome of one tool call, matched to it by ``tool_call_id``."""

    tool_call_id: str
    output: str
    is_error: bool = False

    @property
    def part_type(self) -> Literal["tool_result"]:
        return "tool_result"

    def to_api_format(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "type": "tool_result",
            "tool_use_id": self.tool_call_id,
            "content": self.output,
        }
        if self.is_error:
            result["is_error"] = True
        return result

    def to_dict(self) -> dict[str, Any]:
        return {
            "part_type": "tool_result",
            "tool_call_id": self.tool_call_id,
            "output": self.output,
            "is_error": self.is_error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolResultPart":
        return cls(
            tool_call_id=data["tool_call_id"],
            output=data.get("output", ""),
            is_error=data.get("is_error", False),
        )


# Part type registry
_PART_TYPES: dict[str, type[MessagePart]] = {
    "text": TextPart,
    "tool_call": ToolCallPart,
    "tool_result": ToolResultPart,
}

_ALLOWED_PARTS: dict[Role, tuple[type[MessagePart], ...]] = {
    Role.USER: (TextPart, ToolCallPart),
    Role.ASSISTANT: (TextPart, ToolCallPart),
    Role.TOOL: (ToolResultPart,),
}


def register_part_type(part_type: str, cls: type[MessagePart]) -> None:
    """Register an additional part type for ``part_from_dict``."""
    _PART_TYPES[part_type] = cls


def part_from_dict(data: dict[str, Any]) -> MessagePart:
    """Build the matching part from a dict carrying a ``part_type`` key.

    Raises:
        ValueError: unknown part_type
    """
    part_type = data.get("part_type")
    if part_type not in _PART_TYPES:
        raise ValueError(f"Unknown part type: {part_type}")
    return _PART_TYPES[part_type].from_dict(data)


def part_from_anthropic(block: Any) -> MessagePart:
    """Convert an Anthropic SDK block (or its dict form) into a part.

    Raises:
        ValueError: the block cannot be converted
    """
    if isinstance(block, dict):
        block_type = block.get("type")
        if block_type == "text":
            return TextPart(text=block.get("text", ""))
        if block_type == "tool_use":
            return ToolCallPart(
                id=block["id"],
                name=block["name"],
                arguments=dict(block.get("input") or {}),
            )
        if block_type == "tool_result":
            return ToolResultPart(
                tool_call_id=block["tool_use_id"],
                output=block.get("content", ""),
                is_error=block.get("is_error", False),
            )
    elif hasattr(block, "type"):
        if block.type == "text":
            return TextPart(text=block.text)
        if block.type == "tool_use":
            return ToolCallPart(
                id=block.id,
                name=block.name,
                arguments=dict(block.input) if block.input else {},
            )

    raise ValueError(f"Cannot convert to MessagePart: {type(block)} - {block}")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Message:
    """One conversation turn. Immutable once created."""

    role: Role
    parts: tuple[MessagePart, ...] = ()
    id: str = field(default_factory=lambda: uuid4().hex)
    created_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        if not isinstance(self.parts, tuple):
            object.__setattr__(self, "parts", tuple(self.parts))
        allowed = _ALLOWED_PARTS[self.role]
        for part in self.parts:
            if not isinstance(part, allowed):
                raise InvariantViolation(
                    f"{self.role.value} message cannot carry {part.part_type} parts"
                )

    @property
    def text(self) -> str:
        """All text parts joined by newlines."""
        return "\n".join(p.text for p in self.parts if isinstance(p, TextPart))

    def tool_calls(self) -> list[ToolCallPart]:
        """Tool calls in emission order."""
        return [p for p in self.parts if isinstance(p, ToolCallPart)]

    def tool_results(self) -> list[ToolResultPart]:
        return [p for p in self.parts if isinstance(p, ToolResultPart)]

    def to_api_format(self) -> dict[str, Any]:
        """Anthropic message format. Tool results travel in a user turn."""
        role = "assistant" if self.role is Role.ASSISTANT else "user"
        return {"role": role, "content": [part.to_api_format() for part in self.parts]}

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "parts": [part.to_dict() for part in self.parts],
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        return cls(
            role=Role(data["role"]),
            parts=tuple(part_from_dict(p) for p in data["parts"]),
            id=data["id"],
            created_at=datetime.fromisoformat(data["created_at"]),
        )


def user_message(content: str | Iterable[MessagePart]) -> Message:
    """Build a user message from text or parts."""
    if isinstance(content, str):
        return Message(role=Role.USER, parts=(TextPart(text=content),))
    return Message(role=Role.USER, parts=tuple(content))


def assistant_message(parts: Iterable[MessagePart]) -> Message:
    return Message(role=Role.ASSISTANT, parts=tuple(parts))


def tool_message(results: Iterable[ToolResultPart]) -> Message:
    return Message(role=Role.TOOL, parts=tuple(results))
