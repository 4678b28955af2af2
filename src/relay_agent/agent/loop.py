"""Agent loop - drives model calls and tool execution for one session.

``AgentLoop.run`` asks the provider for complete responses, ``AgentLoop.stream``
consumes provider streams and yields events as they happen. Both are driven
by the same step generator, so a run goes through identical transitions in
either mode.
"""

from __future__ import annotations

import asyncio
import json
import time
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, AsyncIterator, Awaitable

from rich.console import Console

from relay_agent.core import (
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
from relay_agent.errors import (
    InvalidResponseError,
    InvariantViolation,
    LLMError,
    LLMTimeoutError,
    RunCancelled,
    StreamFailedError,
)
from relay_agent.provider.base import (
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
from relay_agent.tools import ToolRegistry

from .executor import ExecutionContext, ToolExecutor
from .message import (
    Message,
    MessagePart,
    TextPart,
    ToolCallPart,
    ToolResultPart,
    assistant_message,
    tool_message,
    user_message as make_user_message,
)
from .permissions import ConfirmationCallback, PermissionManager
from .retry import RetryPolicy, with_retry
from .session import ModelConfig, Session, SessionStatus
from .states import LoopContext, LoopState, RunError, RunResult, TerminationReason

if TYPE_CHECKING:
    from relay_agent.config import Config

# Debug console (shared instance)
_debug_console = Console(stderr=True)
_console = Console(stderr=True)

# Queue marker: the producing task has finished
_DONE = object()


@dataclass
class AgentConfig:
    """Settings of the loop itself. Model settings live on the session."""

    max_steps: int = 20
    call_timeout: float | None = None
    max_output_length: int = 10_000
    max_tool_concurrency: int = 1
    debug: bool = False

    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 16384
    temperature: float | None = None
    top_p: float | None = None

    def __post_init__(self) -> None:
        if self.max_steps < 1:
            raise ValueError("max_steps must be >= 1")

    def model_config(self) -> ModelConfig:
        """Model settings for a new session."""
        return ModelConfig(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            top_p=self.top_p,
        )

    @classmethod
    def from_config(cls, config: Config) -> AgentConfig:
        return cls(
            max_steps=config.get("max_steps", 20),
            call_timeout=config.get("call_timeout"),
            max_output_length=config.get("max_output_length", 10_000),
            max_tool_concurrency=config.get("max_tool_concurrency", 1),
            debug=config.get("debug", False),
            model=config.get("model", cls.model),
            max_tokens=config.get("max_tokens", 16384),
            temperature=config.get("temperature"),
            top_p=config.get("top_p"),
        )


# =============================================================================
# Stream accumulation
# =============================================================================


@dataclass
class _PendingCall:
    id: str
    name: str
    chunks: list[str] = field(default_factory=list)
    part: ToolCallPart | None = None

    def close(self, error: str | None = None) -> None:
        if error is not None:
            self.part = ToolCallPart(id=self.id, name=self.name, argument_error=error)
            return
        arguments, error = parse_arguments("".join(self.chunks))
        self.part = ToolCallPart(
            id=self.id,
            name=self.name,
            arguments=arguments,
            argument_error=error,
        )


def parse_arguments(payload: str) -> tuple[dict[str, Any], str | None]:
    """Parse a complete tool-call argument payload.

    Returns the arguments and, when the payload is unusable, an error
    description. An empty payload means no arguments.
    """
    if not payload.strip():
        return {}, None
    try:
        value = json.loads(payload)
    except json.JSONDecodeError as e:
        return {}, f"arguments are not valid JSON ({e.msg} at position {e.pos})"
    if not isinstance(value, dict):
        return {}, f"arguments must be a JSON object, got {type(value).__name__}"
    return value, None


class StreamAccumulator:
    """Builds message parts from provider stream events.

    Text deltas are concatenated into text parts. Argument fragments are
    collected per call id and parsed only when the call's end marker arrives.
    Parts keep the order in which the model started them.
    """

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        # Each entry is a list of text chunks or a pending tool call
        self._entries: list[list[str] | _PendingCall] = []
        self._open: dict[str, _PendingCall] = {}
        self.finish_reason: FinishReason | None = None
        self.usage = Usage()
        self.finished = False

    def add(self, event: StreamEvent) -> None:
        """Apply one stream event."""
        if self.finished:
            self._warn(f"event after finish ignored: {type(event).__name__}")
            return

        if isinstance(event, TextDelta):
            if self._entries and isinstance(self._entries[-1], list):
                self._entries[-1].append(event.text)
            else:
                self._entries.append([event.text])

        elif isinstance(event, ToolCallStart):
            if event.id in self._open:
                self._warn(f"duplicate start for open tool call {event.id} ignored")
                return
            call = _PendingCall(id=event.id, name=event.name)
            self._open[event.id] = call
            self._entries.append(call)

        elif isinstance(event, ToolCallDelta):
            call = self._open.get(event.id)
            if call is None:
                self._warn(f"argument delta for unknown tool call {event.id} ignored")
                return
            call.chunks.append(event.partial)

        elif isinstance(event, ToolCallEnd):
            call = self._open.pop(event.id, None)
            if call is None:
                self._warn(f"end marker for unknown or finished tool call {event.id} ignored")
                return
            call.close()

        elif isinstance(event, Finish):
            for call in self._open.values():
                call.close(error="incomplete tool call: the stream finished before its end marker")
            self._open.clear()
            self.finish_reason = event.reason
            self.usage = event.usage
            self.finished = True

        elif isinstance(event, StreamError):
            raise StreamFailedError(f"Stream error: {event.message}", retryable=event.retryable)

    def load(self, response: LLMResponse) -> None:
        """Take the content of a complete response."""
        self.reset()
        for part in response.content:
            if isinstance(part, TextPart):
                self._entries.append([part.text])
            elif isinstance(part, ToolCallPart):
                self._entries.append(_PendingCall(id=part.id, name=part.name, part=part))
            else:
                raise InvalidResponseError(
                    f"Unexpected {part.part_type} part in model response"
                )
        self.finish_reason = response.finish_reason
        self.usage = response.usage
        self.finished = True

    def parts(self) -> list[MessagePart]:
        """Accumulated parts. Empty text runs are dropped."""
        parts: list[MessagePart] = []
        for entry in self._entries:
            if isinstance(entry, list):
                text = "".join(entry)
                if text:
                    parts.append(TextPart(text=text))
            elif entry.part is not None:
                parts.append(entry.part)
            else:
                parts.append(ToolCallPart(
                    id=entry.id,
                    name=entry.name,
                    argument_error="incomplete tool call: no end marker received",
                ))
        return parts

    def _warn(self, message: str) -> None:
        _console.print(f"[yellow][StreamAccumulator][/yellow] {message}")


# =============================================================================
# Agent loop
# =============================================================================


class AgentLoop:
    """Main agent loop that handles conversation and tool execution.

    A loop can serve many sessions, one run per session at a time.
    Every run keeps its own step budget and statistics; ``self.context``
    refers to those of the most recently started run.
    """

    def __init__(
        self,
        provider: BaseProvider,
        registry: ToolRegistry,
        permission_manager: PermissionManager | None = None,
        executor: ToolExecutor | None = None,
        config: AgentConfig | None = None,
        retry_policy: RetryPolicy | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self.provider = provider
        self.registry = registry
        self.config = config or AgentConfig()
        self.retry_policy = retry_policy or RetryPolicy()
        self.event_bus = event_bus

        # Executor setup - without an explicit gate every call is denied
        if executor:
            self.executor = executor
        else:
            self.executor = ToolExecutor(
                registry,
                permission_manager=permission_manager,
                max_output_length=self.config.max_output_length,
                max_concurrency=self.config.max_tool_concurrency,
            )

        self.context = LoopContext(max_steps=self.config.max_steps)

    @classmethod
    def from_config(
        cls,
        config: Config,
        registry: ToolRegistry,
        confirm: ConfirmationCallback | None = None,
        provider: BaseProvider | None = None,
        event_bus: EventBus | None = None,
    ) -> AgentLoop:
        """Build a loop, its provider, gate and retry policy from settings."""
        from relay_agent.provider.registry import get_provider

        return cls(
            provider=provider or get_provider(config.get("provider", "claude"), config),
            registry=registry,
            permission_manager=PermissionManager.from_config(config, confirm=confirm),
            config=AgentConfig.from_config(config),
            retry_policy=RetryPolicy.from_config(config),
            event_bus=event_bus,
        )

    def new_session(self, system_prompt: str = "") -> Session:
        """Create a session with this loop's model settings."""
        return Session.create(self.config.model_config(), system_prompt)

    # --- public API ---

    async def run(
        self,
        session: Session,
        user_message: str | Message | None = None,
        cancel: asyncio.Event | None = None,
    ) -> RunResult:
        """Run until the model stops calling tools, using complete responses.

        Args:
            session: Session to continue
            user_message: Appended before the first step when given
            cancel: Set to stop the run at the next opportunity

        Returns:
            RunResult: status, termination reason, final assistant message
                and, for failed runs, a RunError
        """
        result: RunResult | None = None
        async for event in self._events(session, user_message, cancel, streaming=False):
            if isinstance(event, RunCompletedEvent):
                result = event.result
        if result is None:
            raise InvariantViolation("Run ended without a result")
        return result

    def stream(
        self,
        session: Session,
        user_message: str | Message | None = None,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[Event]:
        """Run using provider streams and yield events as they happen.

        The last event is always a ``RunCompletedEvent`` carrying the
        ``RunResult``.
        """
        return self._events(session, user_message, cancel, streaming=True)

    # Debug formatting
    _SEP = "=" * 60

    def _debug_log(self, message: str) -> None:
        """Print debug message in dim style if debug mode is enabled."""
        if self.config.debug:
            _debug_console.print(f"[dim]{message}[/dim]", highlight=False)

    def _emit(self, event: Event) -> None:
        """Emit an event to the event bus if available."""
        if self.event_bus:
            self.event_bus.publish(event)

    def _set_state(self, ctx: LoopContext, session: Session, new_state: LoopState) -> StateChangedEvent:
        old_state = ctx.state
        ctx.record_state(new_state)
        return StateChangedEvent(
            session_id=session.id,
            old_state=old_state.name,
            new_state=new_state.name,
        )

    async def _events(
        self,
        session: Session,
        user_message: str | Message | None,
        cancel: asyncio.Event | None,
        streaming: bool,
    ) -> AsyncIterator[Event]:
        async with aclosing(self._drive(session, user_message, cancel, streaming)) as events:
            async for event in events:
                self._emit(event)
                yield event

    # --- the step generator ---

    async def _drive(
        self,
        session: Session,
        user_message: str | Message | None,
        cancel: asyncio.Event | None,
        streaming: bool,
    ) -> AsyncIterator[Event]:
        if session.status is SessionStatus.RUNNING:
            raise InvariantViolation(f"Session {session.id} already has a run in progress")

        # One context per run; self.context points at the latest one
        ctx = LoopContext(max_steps=self.config.max_steps, start_time=time.time())
        self.context = ctx

        session.status = SessionStatus.RUNNING
        final_message: Message | None = None
        error: RunError | None = None
        reason = TerminationReason.MAX_STEPS
        # Calls of the batch in flight and the results already produced for them
        pending_calls: list[ToolCallPart] = []
        finished: dict[str, ToolResultPart] = {}

        try:
            text = ""
            if user_message is not None:
                message = (
                    user_message
                    if isinstance(user_message, Message)
                    else make_user_message(user_message)
                )
                await session.append(message)
                text = message.text

            yield RunStartedEvent(
                session_id=session.id,
                user_message=text[:100],
                max_steps=ctx.max_steps,
            )

            while ctx.current_step < ctx.max_steps:
                if cancel is not None and cancel.is_set():
                    raise RunCancelled(f"Run cancelled before step {ctx.current_step + 1}")

                ctx.current_step += 1
                step = ctx.current_step
                step_start = time.time()
                yield TurnStartedEvent(session_id=session.id, step=step, max_steps=ctx.max_steps)

                # 1-2. request and response
                yield self._set_state(ctx, session, LoopState.CALLING_LLM)
                request = self._build_request(session)
                accumulator = StreamAccumulator()
                llm_events = self._call_llm(ctx, session, request, accumulator, cancel, streaming)
                async with aclosing(llm_events) as events:
                    async for event in events:
                        yield event

                ctx.input_tokens += accumulator.usage.input_tokens
                ctx.output_tokens += accumulator.usage.output_tokens

                # 3. assistant message
                yield self._set_state(ctx, session, LoopState.PROCESSING_RESPONSE)
                assistant = assistant_message(accumulator.parts())
                await session.append(assistant)
                final_message = assistant
                self._debug_response(assistant)

                if not streaming:
                    for part in assistant.parts:
                        if isinstance(part, TextPart):
                            yield TextDeltaEvent(session_id=session.id, step=step, text=part.text)

                # 4. tool calls
                calls = assistant.tool_calls()
                if not calls:
                    yield self._turn_ended(session, step, 0, accumulator.usage, step_start)
                    reason = TerminationReason.END_TURN
                    break

                # 5-6. execute and record one tool message
                yield self._set_state(ctx, session, LoopState.EXECUTING_TOOLS)
                results: list[ToolResultPart] = []
                pending_calls, finished = calls, {}
                tool_events = self._execute_tools(session, assistant, calls, step, cancel, results, finished)
                async with aclosing(tool_events) as events:
                    async for event in events:
                        yield event
                ctx.total_tool_calls += len(calls)
                await session.append(tool_message(results))
                pending_calls = []

                yield self._turn_ended(session, step, len(calls), accumulator.usage, step_start)

        except RunCancelled as e:
            reason = TerminationReason.CANCELLED
            error = RunError(step=ctx.current_step, message=str(e), cause=e)
            if pending_calls:
                # every emitted call still gets exactly one result
                await session.append(tool_message(_cancelled_results(pending_calls, finished)))
                ctx.total_tool_calls += len(pending_calls)

        except LLMError as e:
            reason = TerminationReason.ERROR
            error = RunError(step=ctx.current_step, message=f"Model call failed: {e}", cause=e)

        except InvariantViolation as e:
            reason = TerminationReason.ERROR
            error = RunError(step=ctx.current_step, message=f"Internal invariant violated: {e}", cause=e)

        except (asyncio.CancelledError, GeneratorExit):
            # cancelled from outside or stream abandoned: keep the transcript, propagate
            session.status = SessionStatus.ERROR
            ctx.termination_reason = TerminationReason.CANCELLED
            ctx.record_state(LoopState.ERROR)
            ctx.end_time = time.time()
            raise

        except Exception as e:
            session.status = SessionStatus.ERROR
            ctx.last_error = e
            ctx.termination_reason = TerminationReason.ERROR
            ctx.record_state(LoopState.ERROR)
            ctx.end_time = time.time()
            raise

        ctx.termination_reason = reason
        ctx.end_time = time.time()

        if error is not None:
            session.status = SessionStatus.ERROR
            ctx.last_error = error.cause
            self._debug_log(f"[ERROR] step {error.step}: {error.message}")
            yield self._set_state(ctx, session, LoopState.ERROR)
            yield RunErrorEvent(
                session_id=session.id,
                step=error.step,
                kind=error.kind,
                message=error.message,
            )
        else:
            session.status = SessionStatus.COMPLETED
            yield self._set_state(ctx, session, LoopState.COMPLETED)

        result = RunResult(
            session_id=session.id,
            status=session.status,
            termination_reason=reason,
            steps=ctx.current_step,
            final_message=final_message,
            error=error,
        )
        yield RunCompletedEvent(
            session_id=session.id,
            termination_reason=reason.name,
            steps=ctx.current_step,
            duration_ms=ctx.duration_ms() or 0.0,
            result=result,
        )

    def _turn_ended(
        self,
        session: Session,
        step: int,
        tool_calls_count: int,
        usage: Usage,
        started: float,
    ) -> TurnEndedEvent:
        return TurnEndedEvent(
            session_id=session.id,
            step=step,
            tool_calls_count=tool_calls_count,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            duration_ms=(time.time() - started) * 1000,
        )

    def _build_request(self, session: Session) -> LLMRequest:
        model = session.model_config
        request = LLMRequest(
            model=model.model,
            messages=list(session.transcript()),
            system_prompt=session.system_prompt,
            tools=self.executor.get_tool_definitions(),
            max_tokens=model.max_tokens,
            temperature=model.temperature,
            top_p=model.top_p,
        )
        self._debug_request(request)
        return request

    # --- model call ---

    def _call_llm(
        self,
        ctx: LoopContext,
        session: Session,
        request: LLMRequest,
        accumulator: StreamAccumulator,
        cancel: asyncio.Event | None,
        streaming: bool,
    ) -> AsyncIterator[Event]:
        """Obtain one assistant response through the retry wrapper.

        The retried call runs as a task; retry notices and text deltas reach
        the caller through a queue while it is in flight. After a retry the
        accumulator starts over, so text already yielded for the failed
        attempt is superseded by the attempt that follows its LLMRetryEvent.
        """
        queue: asyncio.Queue[Any] = asyncio.Queue()
        step = ctx.current_step

        def on_retry(attempt: int, delay: float, error: BaseException) -> None:
            accumulator.reset()
            ctx.total_retries += 1
            self._debug_log(f"[RETRY] attempt {attempt} failed, waiting {delay:.1f}s: {error}")
            queue.put_nowait(LLMRetryEvent(
                session_id=session.id,
                step=step,
                attempt=attempt,
                delay=delay,
                error=str(error),
            ))

        async def attempt() -> None:
            ctx.total_llm_calls += 1
            if streaming:
                await self._with_deadline(self._consume_stream(step, session, request, accumulator, queue))
            else:
                response = await self._with_deadline(self.provider.complete(request))
                accumulator.load(response)

        task = asyncio.ensure_future(with_retry(attempt, self.retry_policy, on_retry=on_retry))
        return _drain(task, queue, cancel)

    async def _consume_stream(
        self,
        step: int,
        session: Session,
        request: LLMRequest,
        accumulator: StreamAccumulator,
        queue: asyncio.Queue[Any],
    ) -> None:
        async with aclosing(self.provider.stream(request)) as events:
            async for event in events:
                accumulator.add(event)
                if isinstance(event, TextDelta) and event.text:
                    queue.put_nowait(TextDeltaEvent(session_id=session.id, step=step, text=event.text))
        if not accumulator.finished:
            raise InvalidResponseError("Stream ended without a finish event")

    async def _with_deadline(self, operation: Awaitable[Any]) -> Any:
        timeout = self.config.call_timeout
        if timeout is None:
            return await operation
        try:
            return await asyncio.wait_for(operation, timeout)
        except asyncio.TimeoutError as e:
            raise LLMTimeoutError(f"Model call exceeded its {timeout}s deadline") from e

    # --- tools ---

    def _execute_tools(
        self,
        session: Session,
        assistant: Message,
        calls: list[ToolCallPart],
        step: int,
        cancel: asyncio.Event | None,
        results: list[ToolResultPart],
        finished: dict[str, ToolResultPart],
    ) -> AsyncIterator[Event]:
        """Gate and run the step's calls, filling ``results`` in call order.

        ``finished`` maps call ids to results as each call completes.
        """
        queue: asyncio.Queue[Any] = asyncio.Queue()
        context = ExecutionContext(session_id=session.id, message_id=assistant.id, step=step)

        def on_call_started(call: ToolCallPart) -> None:
            self._debug_log(f"  [TOOL] {call.name}: {_preview(json.dumps(call.arguments, default=str), 150)}")
            queue.put_nowait(ToolCallRequestedEvent(
                session_id=session.id,
                step=step,
                call_id=call.id,
                tool_name=call.name,
                arguments=dict(call.arguments),
            ))

        def on_result(call: ToolCallPart, result: ToolResultPart, duration_ms: float) -> None:
            finished[call.id] = result
            queue.put_nowait(ToolResultEvent(
                session_id=session.id,
                step=step,
                call_id=call.id,
                tool_name=call.name,
                output=result.output,
                is_error=result.is_error,
                duration_ms=duration_ms,
            ))

        async def run_batch() -> None:
            results.extend(await self.executor.execute_batch(
                calls,
                context,
                on_call_started=on_call_started,
                on_result=on_result,
            ))

        return _drain(asyncio.ensure_future(run_batch()), queue, cancel)

    # --- debug output ---

    def _debug_request(self, request: LLMRequest) -> None:
        if not self.config.debug:
            return
        self._debug_log(f"\n. [LLM REQUEST] {len(request.messages)} message(s), {len(request.tools)} tool(s)")
        for i, message in enumerate(request.messages[-3:], max(1, len(request.messages) - 2)):
            self._debug_log(f"  #{i} {message.role.name}: {_describe(message)}")

    def _debug_response(self, message: Message) -> None:
        if not self.config.debug:
            return
        self._debug_log("\n. [LLM RESPONSE]")
        for part in message.parts:
            if isinstance(part, TextPart):
                self._debug_log(f"  [TEXT] {_preview(part.text, 300)}")
            elif isinstance(part, ToolCallPart):
                detail = part.argument_error or json.dumps(part.arguments, default=str)
                self._debug_log(f"  [TOOL_USE] {part.name}: {_preview(detail, 150)}")


async def _drain(
    task: asyncio.Future[Any],
    queue: asyncio.Queue[Any],
    cancel: asyncio.Event | None,
) -> AsyncIterator[Event]:
    """Yield what ``task`` puts on ``queue`` until it finishes.

    Re-raises the task's exception. When ``cancel`` is set first the task is
    cancelled and RunCancelled is raised.
    """
    task.add_done_callback(lambda _: queue.put_nowait(_DONE))
    try:
        while True:
            item = await _next_item(queue, cancel)
            if item is _DONE:
                break
            yield item
        task.result()
    finally:
        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                _console.print(f"[yellow][AgentLoop][/yellow] Error while cancelling: {e}")


async def _next_item(queue: asyncio.Queue[Any], cancel: asyncio.Event | None) -> Any:
    if cancel is None:
        return await queue.get()
    if cancel.is_set():
        raise RunCancelled("Run cancelled")

    getter = asyncio.ensure_future(queue.get())
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        await asyncio.wait({getter, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for future in (getter, waiter):
            if not future.done():
                future.cancel()
    if getter.done() and not getter.cancelled():
        return getter.result()
    raise RunCancelled("Run cancelled")


def _cancelled_results(
    calls: list[ToolCallPart],
    finished: dict[str, ToolResultPart],
) -> list[ToolResultPart]:
    """Results for an interrupted batch, in call order."""
    return [
        finished.get(call.id) or ToolResultPart(
            tool_call_id=call.id,
            output=f"Tool call '{call.name}' was cancelled before it completed.",
            is_error=True,
        )
        for call in calls
    ]


def _preview(text: str, limit: int) -> str:
    return text[:limit] + "..." if len(text) > limit else text


def _describe(message: Message) -> str:
    pieces = []
    for part in message.parts:
        if isinstance(part, TextPart):
            pieces.append(_preview(part.text, 100))
        elif isinstance(part, ToolCallPart):
            pieces.append(f"Tool={part.name}")
        elif isinstance(part, ToolResultPart):
            pieces.append(f"Result={_preview(part.output, 80)}")
    return " | ".join(pieces) or "(empty)"
