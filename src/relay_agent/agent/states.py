"""Agent loop states, run context and run result."""

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any
import time

from .message import Message
from .session import SessionStatus


class LoopState(Enum):
    """Current phase of the agent loop."""

    IDLE = auto()                 # before run()
    CALLING_LLM = auto()          # waiting on the model
    PROCESSING_RESPONSE = auto()  # appending the assistant turn
    EXECUTING_TOOLS = auto()      # running the tool batch
    COMPLETED = auto()
    ERROR = auto()


class TerminationReason(Enum):
    """Why a run ended."""

    END_TURN = auto()    # model answered without tool calls
    MAX_STEPS = auto()   # step budget exhausted
    CANCELLED = auto()   # cancellation signal
    ERROR = auto()       # LLM failure after retries or invariant violation


@dataclass
class RunError:
    """Caller-facing description of a failed run.

    ``message`` is safe to show to users; ``cause`` keeps the original
    exception for programmatic inspection.
    """

    step: int
    message: str
    cause: BaseException | None = None

    @property
    def kind(self) -> str:
        return type(self.cause).__name__ if self.cause is not None else "Unknown"


@dataclass
class RunResult:
    """Outcome of one agent run."""

    session_id: str
    status: SessionStatus
    termination_reason: TerminationReason
    steps: int
    final_message: Message | None = None
    error: RunError | None = None

    @property
    def truncated(self) -> bool:
        """True when the step budget ended the run, not the model."""
        return self.termination_reason is TerminationReason.MAX_STEPS

    @property
    def cancelled(self) -> bool:
        return self.termination_reason is TerminationReason.CANCELLED

    @property
    def ok(self) -> bool:
        return self.status is SessionStatus.COMPLETED

    @property
    def text(self) -> str:
        return self.final_message.text if self.final_message else ""


@dataclass
class LoopContext:
    """Execution state and statistics of the current run."""

    state: LoopState = LoopState.IDLE
    termination_reason: TerminationReason | None = None

    current_step: int = 0
    max_steps: int = 20

    last_error: BaseException | None = None

    total_tool_calls: int = 0
    total_llm_calls: int = 0
    total_retries: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    start_time: float | None = None
    end_time: float | None = None

    # (timestamp, state) pairs for debugging
    _state_history: list[tuple[float, LoopState]] = field(default_factory=list)

    def is_running(self) -> bool:
        return self.state not in (
            LoopState.IDLE,
            LoopState.COMPLETED,
            LoopState.ERROR,
        )

    def is_finished(self) -> bool:
        return self.state in (LoopState.COMPLETED, LoopState.ERROR)

    def duration_ms(self) -> float | None:
        if self.start_time is not None:
            end = self.end_time or time.time()
            return (end - self.start_time) * 1000
        return None

    def record_state(self, state: LoopState) -> None:
        self._state_history.append((time.time(), state))
        self.state = state

    def state_history(self) -> list[LoopState]:
        return [state for _, state in self._state_history]

    def reset(self) -> None:
        self.state = LoopState.IDLE
        self.termination_reason = None
        self.current_step = 0
        self.last_error = None
        self.total_tool_calls = 0
        self.total_llm_calls = 0
        self.total_retries = 0
        self.input_tokens = 0
        self.output_tokens = 0
        self.start_time = None
        self.end_time = None
        self._state_history.clear()

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.name,
            "termination_reason": self.termination_reason.name if self.termination_reason else None,
            "current_step": self.current_step,
            "max_steps": self.max_steps,
            "total_tool_calls": self.total_tool_calls,
            "total_llm_calls": self.total_llm_calls,
            "total_retries": self.total_retries,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "duration_ms": self.duration_ms(),
            "has_error": self.last_error is not None,
        }
