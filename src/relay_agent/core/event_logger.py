"""Console renderer for run events.

Attach an ``EventLogger`` to the ``EventBus`` a loop publishes to and every
run, step, tool call and retry is rendered on a rich console. Quiet mode shows
the key events; verbose mode adds state transitions, tool output previews and
any event type without a dedicated renderer.
"""

from typing import Callable

from rich.console import Console
from rich.markup import escape

from .events import (
    Event,
    EventBus,
    LLMRetryEvent,
    RunCompletedEvent,
    RunErrorEvent,
    RunStartedEvent,
    StateChangedEvent,
    TextDeltaEvent,
    ToolCallRequestedEvent,
    ToolResultEvent,
    TurnEndedEvent,
    TurnStartedEvent,
)

# event class -> renderer method
_RENDERERS: dict[type[Event], str] = {
    RunStartedEvent: "_on_run_started",
    RunCompletedEvent: "_on_run_completed",
    RunErrorEvent: "_on_run_error",
    TurnStartedEvent: "_on_turn_started",
    TurnEndedEvent: "_on_turn_ended",
    ToolCallRequestedEvent: "_on_tool_requested",
    ToolResultEvent: "_on_tool_result",
    LLMRetryEvent: "_on_llm_retry",
    StateChangedEvent: "_on_state_changed",
}

# never rendered, not even in verbose mode
_SILENT: tuple[type[Event], ...] = (TextDeltaEvent,)


class EventLogger:
    """Renders run events on a console."""

    def __init__(
        self,
        console: Console | None = None,
        verbose: bool = False,
    ) -> None:
        """
        Args:
            console: Target console. Defaults to a stderr console.
            verbose: Also render state changes, output previews and
                events without a dedicated renderer
        """
        self.console = console or Console(stderr=True)
        self.verbose = verbose
        self._unsubscribers: list[Callable[[], None]] = []

    def attach(self, bus: EventBus) -> None:
        """Start rendering the events published on ``bus``."""
        for event_type, method in _RENDERERS.items():
            self._unsubscribers.append(bus.subscribe(event_type, getattr(self, method)))
        if self.verbose:
            self._unsubscribers.append(bus.subscribe_all(self._on_other_event))

    def detach(self) -> None:
        """Stop rendering."""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

    # -------------------------------------------------------------------------
    # Event Handlers
    # -------------------------------------------------------------------------

    def _on_run_started(self, event: RunStartedEvent) -> None:
        self.console.print(f"[dim]{'=' * 60}[/dim]")
        preview = event.user_message[:80] + "..." if len(event.user_message) > 80 else event.user_message
        self.console.print(f"[dim][RUN START] {event.session_id[:8]} {escape(preview)}[/dim]")

    def _on_run_completed(self, event: RunCompletedEvent) -> None:
        self.console.print(f"[dim][RUN END] {event.termination_reason}[/dim]")
        self.console.print(
            f"[dim]  Duration: {event.duration_ms:.0f}ms | Steps: {event.steps}[/dim]"
        )
        self.console.print(f"[dim]{'=' * 60}[/dim]")

    def _on_run_error(self, event: RunErrorEvent) -> None:
        self.console.print(
            f"[red]  [ERROR] step {event.step} {event.kind}: {escape(event.message)}[/red]"
        )

    def _on_turn_started(self, event: TurnStartedEvent) -> None:
        self.console.print(f"[dim]{'─' * 60}[/dim]")
        self.console.print(f"[dim][STEP {event.step}/{event.max_steps}][/dim]")

    def _on_turn_ended(self, event: TurnEndedEvent) -> None:
        self.console.print(
            f"[dim]  LLM: {event.input_tokens}→{event.output_tokens} tokens "
            f"({event.duration_ms:.0f}ms)[/dim]"
        )
        if event.tool_calls_count > 0:
            self.console.print(
                f"[dim]  Step {event.step} completed: {event.tool_calls_count} tool(s)[/dim]"
            )

    def _on_tool_requested(self, event: ToolCallRequestedEvent) -> None:
        self.console.print(f"[dim]  ▶ {event.tool_name}[/dim]")

    def _on_tool_result(self, event: ToolResultEvent) -> None:
        status = "✗" if event.is_error else "✓"
        self.console.print(
            f"[dim]  {status} {event.tool_name} ({event.duration_ms:.0f}ms)[/dim]"
        )
        if self.verbose and event.output_preview:
            self.console.print(f"[dim]    {escape(event.output_preview)}[/dim]")

    def _on_llm_retry(self, event: LLMRetryEvent) -> None:
        self.console.print(
            f"[yellow]  [RETRY] attempt {event.attempt} in {event.delay:.1f}s: {escape(event.error)}[/yellow]"
        )

    def _on_state_changed(self, event: StateChangedEvent) -> None:
        if self.verbose:
            self.console.print(
                f"[dim][STATE] {event.old_state} → {event.new_state}[/dim]"
            )

    def _on_other_event(self, event: Event) -> None:
        if isinstance(event, _SILENT) or type(event) in _RENDERERS:
            return
        self.console.print(f"[dim]  [EVENT] {event.event_type}[/dim]")
