"""Agent core module."""

from .approval import ConsoleConfirmation
from .executor import ExecutionContext, ToolExecutor
from .loop import AgentConfig, AgentLoop, StreamAccumulator, parse_arguments
from .message import (
    Message,
    MessagePart,
    Role,
    TextPart,
    ToolCallPart,
    ToolResultPart,
    assistant_message,
    part_from_anthropic,
    part_from_dict,
    register_part_type,
    tool_message,
    user_message,
)
from .permissions import (
    ConfirmationCallback,
    Permission,
    PermissionManager,
    PermissionRule,
)
from .retry import RetryPolicy, classify_error, with_retry
from .session import ModelConfig, Session, SessionStatus
from .states import LoopContext, LoopState, RunError, RunResult, TerminationReason

__all__ = [
    "AgentLoop",
    "AgentConfig",
    "StreamAccumulator",
    "parse_arguments",
    "ToolExecutor",
    "ExecutionContext",
    "Session",
    "SessionStatus",
    "ModelConfig",
    "LoopState",
    "TerminationReason",
    "LoopContext",
    "RunResult",
    "RunError",
    # Messages
    "Message",
    "Role",
    "MessagePart",
    "TextPart",
    "ToolCallPart",
    "ToolResultPart",
    "user_message",
    "assistant_message",
    "tool_message",
    "part_from_dict",
    "part_from_anthropic",
    "register_part_type",
    # Permissions
    "Permission",
    "PermissionRule",
    "PermissionManager",
    "ConfirmationCallback",
    "ConsoleConfirmation",
    # Retry
    "RetryPolicy",
    "classify_error",
    "with_retry",
]
