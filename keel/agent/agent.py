"""
Main agent implementation: the turn-loop controller.

This module provides the Agent class that alternates streaming model calls
and sequential tool execution, enforces the turn budget, reacts to loop
signals and settles the conversation cleanly on cancellation or failure.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator

from keel.agent.cancellation import CancellationToken
from keel.agent.events import AgentEvent, TurnState
from keel.agent.session import ConversationSession
from keel.config.schema import Configuration
from keel.constants import SKIPPED_PLACEHOLDER, STOPPED_MESSAGE, STOPPED_PLACEHOLDER
from keel.context.models import (
    AssistantMessage,
    ContentPart,
    ConversationWindow,
    Message,
    SystemMessage,
    ToolMessage,
    UserMessage,
)
from keel.exceptions import (
    APIError,
    ModelTimeoutError,
    OperationCancelled,
    StreamError,
    TransportError,
)
from keel.interfaces import ModelStreamProtocol, SummarizerProtocol, ToolExecutorProtocol
from keel.llm.models import TokenUsage, ToolCall
from keel.prompts import budget_exhausted_message, max_turns_message
from keel.stream.accumulator import DeltaAccumulator
from keel.stream.decoder import decode_stream
from keel.stream.models import FinalizedResponse
from keel.tools.models import ActionState, ActionStatus
from keel.types import ToolSchemas

logger = logging.getLogger(__name__)

RUN_FAILURES = (TransportError, APIError, ModelTimeoutError, StreamError)


@dataclass
class _RunContext:
    """Mutable state of one run."""

    pending: list[Message]
    token: CancellationToken
    outstanding: list[ToolCall] = field(default_factory=list)
    actions: dict[str, ActionState] = field(default_factory=dict)
    accumulator: DeltaAccumulator | None = None
    estimated_input_tokens: int = 0
    usage: TokenUsage = field(default_factory=TokenUsage)
    final_response: str | None = None


class Agent:
    """
    Streaming tool-calling agent.

    Each call to :meth:`run` drives one user message through as many
    model turns as it takes, publishing :class:`AgentEvent` objects as it
    goes. Only one run is active at a time; :meth:`cancel` stops it at the
    next suspension point.

    Parameters
    ----------
    config : Configuration
        Configuration object with agent settings.
    executor : ToolExecutorProtocol | None, optional
        Collaborator that runs tools.
    client : ModelStreamProtocol | None, optional
        Model transport. An :class:`keel.llm.client.LLMClient` is built if
        not provided.
    tools : ToolSchemas | None, optional
        Tool schemas sent with every request.
    summarizer : SummarizerProtocol | None, optional
        Out-of-band summarizer used when compressing history.

    Attributes
    ----------
    session : ConversationSession
        The conversation and its components.
    state : TurnState
        Current state of the turn loop.

    Examples
    --------
    >>> async with Agent(config, executor=executor, tools=executor.schemas) as agent:
    ...     async for event in agent.run("Create hello.txt"):
    ...         if event.type == AgentEventType.SNAPSHOT:
    ...             print(event.data["text_so_far"])
    """

    def __init__(
        self,
        config: Configuration,
        executor: ToolExecutorProtocol | None = None,
        client: ModelStreamProtocol | None = None,
        tools: ToolSchemas | None = None,
        summarizer: SummarizerProtocol | None = None,
    ) -> None:
        self.config: Configuration = config
        self.session: ConversationSession = ConversationSession(
            config,
            executor=executor,
            client=client,
            tools=tools,
            summarizer=summarizer,
        )
        self.state: TurnState = TurnState.IDLE
        self._token: CancellationToken | None = None
        self._running: bool = False

    @property
    def is_running(self) -> bool:
        return self._running

    def cancel(self, reason: str | None = None) -> bool:
        """
        Request cancellation of the active run.

        Returns
        -------
        bool
            True if a run was active.
        """
        if self._token is None:
            return False
        self._token.cancel(reason)
        return True

    def _set_state(self, target: TurnState) -> AgentEvent | None:
        if target is self.state:
            return None
        previous: TurnState = self.state
        self.state = target
        logger.debug(f"Turn state {previous.value} -> {target.value}")
        return AgentEvent.state_change(previous, target)

    async def run(
        self,
        message: str | list[ContentPart] | UserMessage,
    ) -> AsyncGenerator[AgentEvent, None]:
        """
        Run the agent with a user message.

        A call made while another run is in flight yields nothing.

        Parameters
        ----------
        message : str | list[ContentPart] | UserMessage
            User message to process.

        Yields
        ------
        AgentEvent
            Lifecycle, snapshot, action state and notice events.

        Examples
        --------
        >>> async for event in agent.run("Hello!"):
        ...     if event.type == AgentEventType.TEXT_COMPLETE:
        ...         print(event.data["content"])
        """
        if self._running:
            logger.warning("A run is already in progress; ignoring message")
            return

        user_message: UserMessage = (
            message if isinstance(message, UserMessage) else UserMessage(content=message)
        )

        self._running = True
        self._token = CancellationToken()
        try:
            async for event in self._run(user_message, self._token):
                yield event
        finally:
            self._token = None
            self._running = False

    async def _run(
        self,
        user_message: UserMessage,
        token: CancellationToken,
    ) -> AsyncGenerator[AgentEvent, None]:
        run = _RunContext(pending=[user_message], token=token)
        events: list[AgentEvent | None] = []

        yield AgentEvent.agent_start(user_message.text())

        try:
            async for event in self._agentic_loop(run):
                yield event
        except OperationCancelled:
            logger.info("Run cancelled")
            events = [*self._settle(run, STOPPED_PLACEHOLDER, STOPPED_MESSAGE)]
            events.append(self._set_state(TurnState.ABORTED))
        except RUN_FAILURES as e:
            logger.error(f"Run failed: {e}", exc_info=True)
            events = [*self._settle(run, f"[Error: {e.message}]", f"Error: {e.message}")]
            events.append(AgentEvent.agent_error(e.message, e.to_dict()))
            events.append(self._set_state(TurnState.FAILED))
        finally:
            self.session.commit(run.pending)
            if self.state in (TurnState.REQUESTING, TurnState.DISPATCHING):
                self.state = TurnState.IDLE

        for event in events:
            if event is not None:
                yield event

        final_state: TurnState = self.state
        result = await self.session.compress()
        if result is not None:
            yield AgentEvent.notice(result.notice)

        yield AgentEvent.agent_end(final_state, run.final_response, run.usage)

    async def _agentic_loop(self, run: _RunContext) -> AsyncGenerator[AgentEvent, None]:
        """
        Alternate model calls and tool dispatch until the model stops.

        Yields
        ------
        AgentEvent
            Events from each turn.
        """
        max_turns: int = self.config.max_turns

        for turn_num in range(1, max_turns + 1):
            run.token.raise_if_cancelled()

            window: ConversationWindow = self._build_window(run)
            if window.over_budget:
                logger.warning(
                    f"Context budget exhausted ({window.estimated_tokens:,}/{window.budget:,} tokens)",
                )
                message = budget_exhausted_message(window.estimated_tokens, window.budget)
                run.pending.append(AssistantMessage(content=message))
                run.final_response = message
                yield AgentEvent.notice(message)
                event = self._set_state(TurnState.IDLE)
                if event:
                    yield event
                return

            self.session.increment_turn()

            event = self._set_state(TurnState.REQUESTING)
            if event:
                yield event

            response: FinalizedResponse | None = None
            async for item in self._stream_turn(run, window):
                if isinstance(item, FinalizedResponse):
                    response = item
                else:
                    yield item
            if response is None:
                raise StreamError("Model stream ended without a response")

            if response.usage:
                run.usage = run.usage + response.usage
                self.session.add_usage(response.usage)

            assistant = AssistantMessage(
                content=response.text,
                tool_calls=response.tool_calls,
                thinking=response.thinking,
                thinking_duration_seconds=response.thinking_duration_seconds,
            )
            if assistant.has_payload() or assistant.thinking:
                run.pending.append(assistant)
            if response.text or response.thinking:
                yield AgentEvent.text_complete(
                    response.text,
                    response.thinking,
                    response.thinking_duration_seconds,
                )

            if not response.tool_calls:
                run.final_response = response.text
                event = self._set_state(TurnState.IDLE)
                if event:
                    yield event
                return

            run.outstanding = list(response.tool_calls)
            event = self._set_state(TurnState.DISPATCHING)
            if event:
                yield event

            halted: bool = False
            async for item in self._dispatch_turn(run):
                if isinstance(item, AgentEvent):
                    yield item
                else:
                    halted = True

            if halted:
                event = self._set_state(TurnState.IDLE)
                if event:
                    yield event
                return

            if turn_num >= max_turns:
                break

        logger.warning(f"Maximum turns ({max_turns}) reached")
        message = max_turns_message(max_turns)
        run.pending.append(AssistantMessage(content=message))
        run.final_response = message
        yield AgentEvent.notice(message)
        event = self._set_state(TurnState.IDLE)
        if event:
            yield event

    def _build_window(self, run: _RunContext) -> ConversationWindow:
        return self.session.context_manager.build_window(
            self.session.system_prompt,
            self.session.history,
            run.pending,
        )

    async def _read_stream(
        self,
        window: ConversationWindow,
        accumulator: DeltaAccumulator,
        token: CancellationToken,
    ) -> FinalizedResponse:
        chunks = self.session.client.stream_bytes(
            window.to_wire(),
            self.session.tools,
            window.estimated_tokens,
        )
        try:
            async for frame in decode_stream(chunks, token):
                accumulator.on_frame(frame)
        finally:
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                await aclose()
        return accumulator.finalize(window.estimated_tokens)

    async def _stream_turn(
        self,
        run: _RunContext,
        window: ConversationWindow,
    ) -> AsyncGenerator[AgentEvent | FinalizedResponse, None]:
        """
        Stream one model call, relaying events as frames arrive.

        The read runs as a task bounded by ``model_call_timeout_sec``;
        events the accumulator publishes are pumped through a queue. The
        finalized response is yielded last.
        """
        queue: asyncio.Queue[AgentEvent] = asyncio.Queue()

        def on_tool_call(call: ToolCall, index: int) -> None:
            state: ActionState | None = run.actions.get(call.id)
            if state is None:
                state = ActionState(tool_call_id=call.id, name=call.name)
                run.actions[call.id] = state
                queue.put_nowait(AgentEvent.action_state(state))
            elif call.name and not state.name:
                state.name = call.name

        accumulator = DeltaAccumulator(
            on_snapshot=lambda snapshot: queue.put_nowait(AgentEvent.snapshot(snapshot)),
            on_tool_call=on_tool_call,
        )
        run.accumulator = accumulator
        run.estimated_input_tokens = window.estimated_tokens

        timeout: float = self.config.model_call_timeout_sec
        logger.debug(
            f"Requesting model: {len(window.messages)} message(s), "
            f"~{window.estimated_tokens:,} tokens",
        )
        task: asyncio.Future[FinalizedResponse] = asyncio.ensure_future(
            asyncio.wait_for(self._read_stream(window, accumulator, run.token), timeout),
        )

        getter: asyncio.Task[AgentEvent] | None = None
        try:
            while True:
                getter = asyncio.ensure_future(queue.get())
                done, _ = await asyncio.wait(
                    {task, getter},
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if getter in done:
                    yield getter.result()
                    continue
                break

            while not queue.empty():
                yield queue.get_nowait()

            try:
                response: FinalizedResponse = task.result()
            except asyncio.TimeoutError as e:
                raise ModelTimeoutError(
                    f"Model call timed out after {timeout:g}s",
                    timeout_sec=timeout,
                    cause=e,
                ) from e
        finally:
            if getter is not None and not getter.done():
                getter.cancel()
            if not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)

        run.accumulator = None
        yield response

    async def _dispatch_turn(
        self,
        run: _RunContext,
    ) -> AsyncGenerator[AgentEvent | bool, None]:
        """
        Execute the outstanding tool calls of one reply in order.

        Yields
        ------
        AgentEvent | bool
            Events, and ``True`` once if duplicate file creation halted
            the run.
        """
        corrective: list[str] = []
        detector = self.session.loop_detector

        for call in list(run.outstanding):
            run.token.raise_if_cancelled()

            halt = detector.check_duplicate_file(call)
            if halt is not None:
                for event in self._answer_outstanding(run, SKIPPED_PLACEHOLDER):
                    yield event
                for message in self._append_corrective(run, corrective):
                    yield AgentEvent.notice(message)
                run.pending.append(AssistantMessage(content=halt.message))
                run.final_response = halt.message
                yield AgentEvent.notice(halt.message)
                yield True
                return

            state: ActionState = self._action_for(run, call)
            yield AgentEvent.action_state(state.advance(ActionStatus.RUNNING))

            result = await self.session.dispatcher.dispatch(call, run.token)

            run.pending.append(
                ToolMessage(
                    tool_call_id=call.id,
                    name=result.name,
                    content=result.content,
                ),
            )
            run.outstanding.remove(call)
            target = ActionStatus.ERROR if result.is_error else ActionStatus.DONE
            yield AgentEvent.action_state(state.advance(target, result.content))

            corrective.extend(detector.record_result(result.name, result.is_error).corrective)
            ready: str | None = detector.check_ready(result.content)
            if ready:
                corrective.append(ready)

        for message in self._append_corrective(run, corrective):
            yield AgentEvent.notice(message)

    def _append_corrective(self, run: _RunContext, messages: list[str]) -> list[str]:
        for message in messages:
            run.pending.append(SystemMessage(content=message))
        if messages:
            logger.info(f"Injected {len(messages)} corrective message(s)")
        return messages

    def _action_for(self, run: _RunContext, call: ToolCall) -> ActionState:
        state: ActionState | None = run.actions.get(call.id)
        if state is None:
            state = ActionState(tool_call_id=call.id, name=call.name)
            run.actions[call.id] = state
        return state

    def _answer_outstanding(self, run: _RunContext, placeholder: str) -> list[AgentEvent]:
        events: list[AgentEvent] = []
        for call in run.outstanding:
            run.pending.append(
                ToolMessage(tool_call_id=call.id, name=call.name or None, content=placeholder),
            )
            state: ActionState = self._action_for(run, call)
            if not state.is_finished:
                events.append(AgentEvent.action_state(state.advance(ActionStatus.ERROR, placeholder)))
        if run.outstanding:
            logger.debug(f"Answered {len(run.outstanding)} outstanding call(s) with {placeholder!r}")
        run.outstanding = []
        return events

    def _settle(self, run: _RunContext, placeholder: str, final_text: str) -> list[AgentEvent]:
        """
        Leave the conversation valid after the run was interrupted.

        Partial assistant output of an interrupted stream is kept. Every
        tool call issued but unanswered gets ``placeholder`` as its result,
        then ``final_text`` is appended as an assistant message.
        """
        events: list[AgentEvent] = []

        if run.accumulator is not None:
            partial: FinalizedResponse = run.accumulator.finalize(run.estimated_input_tokens)
            run.accumulator = None
            assistant = AssistantMessage(
                content=partial.text,
                tool_calls=partial.tool_calls,
                thinking=partial.thinking,
                thinking_duration_seconds=partial.thinking_duration_seconds,
            )
            if assistant.has_payload() or assistant.thinking:
                run.pending.append(assistant)
                run.outstanding = list(partial.tool_calls)

        events.extend(self._answer_outstanding(run, placeholder))
        run.pending.append(AssistantMessage(content=final_text))
        run.final_response = final_text
        events.append(AgentEvent.notice(final_text))
        return events

    async def __aenter__(self) -> "Agent":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        """
        Async context manager exit.

        Cancels an active run and closes the model client.
        """
        self.cancel()
        await self.session.close()
        logger.debug("Agent resources cleaned up")
