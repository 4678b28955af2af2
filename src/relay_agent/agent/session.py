"""Session store: append-only transcript plus run metadata."""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any
from uuid import uuid4

from relay_agent.errors import InvariantViolation

from .message import Message, Role, ToolCallPart


class SessionStatus(Enum):
    """Run status of a session."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(frozen=True)
class ModelConfig:
    """Model settings sent with every request."""

    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 16384
    temperature: float | None = None
    top_p: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "top_p": self.top_p,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ModelConfig":
        return cls(
            model=data.get("model", cls.model),
            max_tokens=data.get("max_tokens", cls.max_tokens),
            temperature=data.get("temperature"),
            top_p=data.get("top_p"),
        )


class Session:
    """Conversation transcript owned by one agent run at a time.

    Messages are only ever appended. Every append happens under a single
    lock that is held for the append alone, never across a model call or a
    tool execution.
    """

    def __init__(
        self,
        model_config: ModelConfig | None = None,
        system_prompt: str = "",
        session_id: str | None = None,
    ) -> None:
        self.id: str = session_id or str(uuid4())
        self.model_config = model_config or ModelConfig()
        self.system_prompt = system_prompt
        self.status = SessionStatus.IDLE
        self._messages: list[Message] = []
        self._tool_call_ids: set[str] = set()
        self._lock = asyncio.Lock()

    @classmethod
    def create(
        cls,
        model_config: ModelConfig | None = None,
        system_prompt: str = "",
    ) -> "Session":
        """Create a new idle session."""
        return cls(model_config=model_config, system_prompt=system_prompt)

    async def append(self, message: Message) -> Message:
        """Append a message to the transcript.

        Raises:
            InvariantViolation: a tool result references a tool call id that
                does not appear earlier in the transcript
        """
        async with self._lock:
            self._append_unlocked(message)
        return message

    def _append_unlocked(self, message: Message) -> None:
        if message.role is Role.TOOL:
            unknown = [
                r.tool_call_id
                for r in message.tool_results()
                if r.tool_call_id not in self._tool_call_ids
            ]
            if unknown:
                raise InvariantViolation(
                    f"Tool result references unknown tool call id(s): {', '.join(unknown)}"
                )
        self._messages.append(message)
        self._tool_call_ids.update(
            p.id for p in message.parts if isinstance(p, ToolCallPart)
        )

    def transcript(self) -> tuple[Message, ...]:
        """Read-only snapshot of the transcript in conversation order."""
        return tuple(self._messages)

    @property
    def messages(self) -> tuple[Message, ...]:
        return self.transcript()

    @property
    def last_message(self) -> Message | None:
        return self._messages[-1] if self._messages else None

    def tool_call_ids(self) -> frozenset[str]:
        """Ids of every tool call seen so far."""
        return frozenset(self._tool_call_ids)

    def to_api_format(self) -> list[dict[str, Any]]:
        return [msg.to_api_format() for msg in self._messages]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "system_prompt": self.system_prompt,
            "model_config": self.model_config.to_dict(),
            "status": self.status.value,
            "messages": [msg.to_dict() for msg in self._messages],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Session":
        """Replay a serialised transcript into a new session."""
        session = cls(
            model_config=ModelConfig.from_dict(data.get("model_config", {})),
            system_prompt=data.get("system_prompt", ""),
            session_id=data["id"],
        )
        for msg_data in data["messages"]:
            session._append_unlocked(Message.from_dict(msg_data))
        status = SessionStatus(data.get("status", SessionStatus.IDLE.value))
        # a run that was in flight when the session was saved did not finish
        session.status = SessionStatus.ERROR if status is SessionStatus.RUNNING else status
        return session

    def __len__(self) -> int:
        return len(self._messages)
