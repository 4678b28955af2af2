"""Event system for loose coupling between components.

The agent loop publishes these events to an ``EventBus`` in both run modes
and yields the same objects from ``AgentLoop.stream``.
"""

import threading
from abc import ABC
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, TypeVar

from rich.console import Console

if TYPE_CHECKING:
    from relay_agent.agent.states import RunResult

_console = Console(stderr=True)

# Type aliases
EventHandler = Callable[["Event"], None]
T = TypeVar("T", bound="Event")


# =============================================================================
# Base Event Class
# =============================================================================


@dataclass
class Event(ABC):
    """Base class for all events.

    All events should inherit from this class and define their
    specific attributes as dataclass fields.
    """

    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def event_type(self) -> str:
        """Return the event type name (class name)."""
        return self.__class__.__name__


# =============================================================================
# Run Events
# =============================================================================


@dataclass
class RunStartedEvent(Event):
    """Emitted when a run starts."""

    session_id: str = ""
    user_message: str = ""
    max_steps: int = 0


@dataclass
class RunErrorEvent(Event):
    """Emitted when a run ends in the ERROR state."""

    session_id: str = ""
    step: int = 0
    kind: str = ""
    message: str = ""


@dataclass
class RunCompletedEvent(Event):
    """Always the last event of a run, whatever its outcome."""

    session_id: str = ""
    termination_reason: str = ""
    steps: int = 0
    duration_ms: float = 0.0
    result: "RunResult | None" = None


# =============================================================================
# Turn Events
# =============================================================================


@dataclass
class TurnStartedEvent(Event):
    """Emitted before the model is called for a step."""

    session_id: str = ""
    step: int = 0
    max_steps: int = 0


@dataclass
class TurnEndedEvent(Event):
    """Emitted after a step's assistant message (and tool results) are recorded."""

    session_id: str = ""
    step: int = 0
    tool_calls_count: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    duration_ms: float = 0.0


@dataclass
class TextDeltaEvent(Event):
    """A piece of assistant text.

    In streaming mode one per provider delta, in single-shot mode one per
    text part.
    """

    session_id: str = ""
    step: int = 0
    text: str = ""


# =============================================================================
# State Events
# =============================================================================


@dataclass
class StateChangedEvent(Event):
    """Emitted when the loop state changes."""

    session_id: str = ""
    old_state: str = ""
    new_state: str = ""


# =============================================================================
# LLM Events
# =============================================================================


@dataclass
class LLMRetryEvent(Event):
    """Emitted before sleeping ahead of another model call attempt."""

    session_id: str = ""
    step: int = 0
    attempt: int = 0
    delay: float = 0.0
    error: str = ""


# =============================================================================
# Tool Events
# =============================================================================


@dataclass
class ToolCallRequestedEvent(Event):
    """Emitted before a tool call passes the permission gate."""

    session_id: str = ""
    step: int = 0
    call_id: str = ""
    tool_name: str = ""
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolResultEvent(Event):
    """Emitted once per tool call with its result."""

    session_id: str = ""
    step: int = 0
    call_id: str = ""
    tool_name: str = ""
    output: str = ""
    is_error: bool = False
    duration_ms: float = 0.0

    @property
    def output_preview(self) -> str:
        """First 200 characters of the output."""
        return self.output[:200]


# =============================================================================
# EventBus
# =============================================================================


class EventBus:
    """Synchronous publish/subscribe hub for run events.

    A handler subscribed to an event class also receives that class's
    subclasses, so subscribing to ``Event`` is the same as ``subscribe_all``.
    Handlers run in subscription order, most specific class first. A failing
    handler is reported on the console and the remaining handlers still run.

    Subscription lists are guarded by a lock so one bus can be shared by
    loops running in different threads.
    """

    def __init__(self) -> None:
        self._handlers: dict[type[Event], list[EventHandler]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(
        self,
        event_type: type[T],
        handler: Callable[[T], None],
    ) -> Callable[[], None]:
        """Subscribe to an event class and its subclasses.

        Returns:
            Unsubscribe function; calling it more than once is harmless
        """
        with self._lock:
            self._handlers[event_type].append(handler)  # type: ignore[arg-type]

        def unsubscribe() -> None:
            with self._lock:
                handlers = self._handlers.get(event_type, [])
                if handler in handlers:
                    handlers.remove(handler)  # type: ignore[arg-type]

        return unsubscribe

    def subscribe_all(self, handler: EventHandler) -> Callable[[], None]:
        """Subscribe to every event."""
        return self.subscribe(Event, handler)

    def publish(self, event: Event) -> None:
        """Deliver an event to every matching handler."""
        for handler in self._matching(type(event)):
            try:
                handler(event)
            except Exception as e:
                name = getattr(handler, "__qualname__", repr(handler))
                _console.print(
                    f"[yellow][EventBus][/yellow] {name} failed on {event.event_type}: {e}"
                )

    def _matching(self, event_class: type[Event]) -> list[EventHandler]:
        with self._lock:
            return [
                handler
                for cls in event_class.__mro__
                if cls in self._handlers
                for handler in self._handlers[cls]
            ]

    def clear(self) -> None:
        """Drop all subscriptions."""
        with self._lock:
            self._handlers.clear()


_default_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    """Process-wide bus for callers that do not inject their own."""
    global _default_bus
    if _default_bus is None:
        _default_bus = EventBus()
    return _default_bus
