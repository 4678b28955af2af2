"""Core components package.

Contains the observer events shared by the agent loop and its subscribers.
"""

from .events import (
    # Base
    Event,
    EventBus,
    EventHandler,
    get_event_bus,
    # Run events
    RunStartedEvent,
    RunErrorEvent,
    RunCompletedEvent,
    # Turn events
    TurnStartedEvent,
    TurnEndedEvent,
    TextDeltaEvent,
    # State events
    StateChangedEvent,
    # LLM events
    LLMRetryEvent,
    # Tool events
    ToolCallRequestedEvent,
    ToolResultEvent,
)
from .event_logger import EventLogger

__all__ = [
    # Base
    "Event",
    "EventBus",
    "EventHandler",
    "get_event_bus",
    # Run events
    "RunStartedEvent",
    "RunErrorEvent",
    "RunCompletedEvent",
    # Turn events
    "TurnStartedEvent",
    "TurnEndedEvent",
    "TextDeltaEvent",
    # State events
    "StateChangedEvent",
    # LLM events
    "LLMRetryEvent",
    # Tool events
    "ToolCallRequestedEvent",
    "ToolResultEvent",
    # Logger
    "EventLogger",
]
