"""
Event models for agent lifecycle and operations.

This module defines the events a run publishes to its consumer: lifecycle
events, live stream snapshots, tool-call action states and notices.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from keel.llm.models import TokenUsage
from keel.stream.models import StreamSnapshot
from keel.tools.models import ActionState


class TurnState(str, Enum):
    """
    State of the turn loop.

    Attributes
    ----------
    IDLE : str
        No model call or dispatch in progress. Also the state after a
        natural completion or a budget stop.
    REQUESTING : str
        A model call is streaming.
    DISPATCHING : str
        Tool calls of the last reply are executing.
    ABORTED : str
        The run was cancelled.
    FAILED : str
        The run ended on a transport error or timeout.
    """

    IDLE = "idle"
    REQUESTING = "requesting"
    DISPATCHING = "dispatching"
    ABORTED = "aborted"
    FAILED = "failed"


class AgentEventType(str, Enum):
    """
    Types of events emitted by the agent.

    Examples
    --------
    >>> event_type = AgentEventType.SNAPSHOT
    >>> if event_type == AgentEventType.ACTION_STATE:
    ...     # Update the action list
    """

    # Agent lifecycle
    AGENT_START = "agent_start"
    AGENT_END = "agent_end"
    AGENT_ERROR = "agent_error"
    STATE_CHANGE = "state_change"

    # Streaming
    SNAPSHOT = "snapshot"
    TEXT_COMPLETE = "text_complete"

    # Tool calls
    ACTION_STATE = "action_state"

    # Informational
    NOTICE = "notice"


class AgentEvent(BaseModel):
    """
    Event emitted by the agent during execution.

    Parameters
    ----------
    type : AgentEventType
        Type of the event.
    data : dict[str, Any], default={}
        Event-specific data.

    Examples
    --------
    >>> event = AgentEvent.agent_start("Hello")
    >>> event = AgentEvent.notice("Context compressed")
    """

    type: AgentEventType = Field(description="Event type")
    data: dict[str, Any] = Field(default_factory=dict, description="Event data")

    @classmethod
    def agent_start(cls, message: str) -> "AgentEvent":
        return cls(
            type=AgentEventType.AGENT_START,
            data={"message": message},
        )

    @classmethod
    def agent_end(
        cls,
        state: TurnState,
        response: str | None = None,
        usage: TokenUsage | None = None,
    ) -> "AgentEvent":
        """
        Create an agent end event.

        Parameters
        ----------
        state : TurnState
            Terminal state of the run.
        response : str | None, optional
            Final response text.
        usage : TokenUsage | None, optional
            Token usage accumulated over the run.

        Returns
        -------
        AgentEvent
            Agent end event.
        """
        return cls(
            type=AgentEventType.AGENT_END,
            data={
                "state": state.value,
                "response": response,
                "usage": usage.model_dump() if usage else None,
            },
        )

    @classmethod
    def agent_error(
        cls,
        error: str,
        details: dict[str, Any] | None = None,
    ) -> "AgentEvent":
        return cls(
            type=AgentEventType.AGENT_ERROR,
            data={"error": error, "details": details or {}},
        )

    @classmethod
    def state_change(cls, previous: TurnState, current: TurnState) -> "AgentEvent":
        return cls(
            type=AgentEventType.STATE_CHANGE,
            data={"previous": previous.value, "current": current.value},
        )

    @classmethod
    def snapshot(cls, snapshot: StreamSnapshot) -> "AgentEvent":
        """
        Create a live stream snapshot event.

        Parameters
        ----------
        snapshot : StreamSnapshot
            Visible text, thinking and tool calls seen so far.

        Returns
        -------
        AgentEvent
            Snapshot event carrying ``text_so_far``, ``thinking_so_far``,
            ``is_thinking`` and ``tool_calls``.
        """
        return cls(
            type=AgentEventType.SNAPSHOT,
            data=snapshot.model_dump(),
        )

    @classmethod
    def text_complete(
        cls,
        content: str | None,
        thinking: str | None = None,
        thinking_duration_seconds: float | None = None,
    ) -> "AgentEvent":
        return cls(
            type=AgentEventType.TEXT_COMPLETE,
            data={
                "content": content,
                "thinking": thinking,
                "thinking_duration_seconds": thinking_duration_seconds,
            },
        )

    @classmethod
    def action_state(cls, state: ActionState) -> "AgentEvent":
        """
        Create a tool-call action state event.

        Parameters
        ----------
        state : ActionState
            Current projection of the call, keyed by ``tool_call_id``.

        Returns
        -------
        AgentEvent
            Action state event.
        """
        return cls(
            type=AgentEventType.ACTION_STATE,
            data=state.model_dump(mode="json"),
        )

    @classmethod
    def notice(cls, message: str) -> "AgentEvent":
        return cls(
            type=AgentEventType.NOTICE,
            data={"message": message},
        )
