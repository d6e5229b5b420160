"""
Data models for tool dispatch.

This module defines the result of dispatching one tool call and the
``ActionState`` projection the UI uses to show a call's progress.
"""

from enum import Enum

from pydantic import BaseModel, Field

from keel.exceptions import StateTransitionError


class ActionStatus(str, Enum):
    """
    Lifecycle status of a tool call as shown to the user.

    Attributes
    ----------
    PENDING : str
        Seen in the stream, not yet started.
    RUNNING : str
        Handed to the executor.
    DONE : str
        Finished with a non-error result.
    ERROR : str
        Finished with an error result.
    """

    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"


_ALLOWED_TRANSITIONS: dict[ActionStatus, frozenset[ActionStatus]] = {
    ActionStatus.PENDING: frozenset({ActionStatus.RUNNING, ActionStatus.ERROR}),
    ActionStatus.RUNNING: frozenset({ActionStatus.DONE, ActionStatus.ERROR}),
    ActionStatus.DONE: frozenset(),
    ActionStatus.ERROR: frozenset(),
}


class ActionState(BaseModel):
    """
    UI projection of a tool call during execution.

    Status moves forward only: pending, then running, then done or error.
    A call that is never executed (stopped or skipped) may go from
    pending straight to error.

    Parameters
    ----------
    tool_call_id : str
        Identifier of the projected tool call.
    name : str
        Tool name.
    status : ActionStatus, default=ActionStatus.PENDING
        Current status.
    result : str | None, optional
        Result text once finished.

    Examples
    --------
    >>> state = ActionState(tool_call_id="call_1", name="createFile")
    >>> state.advance(ActionStatus.RUNNING).status
    <ActionStatus.RUNNING: 'running'>
    """

    tool_call_id: str = Field(description="Tool call identifier")
    name: str = Field(default="", description="Tool name")
    status: ActionStatus = Field(default=ActionStatus.PENDING, description="Status")
    result: str | None = Field(default=None, description="Result text")

    @property
    def is_finished(self) -> bool:
        return self.status in (ActionStatus.DONE, ActionStatus.ERROR)

    def advance(self, target: ActionStatus, result: str | None = None) -> "ActionState":
        """
        Move to ``target`` in place and return self.

        Parameters
        ----------
        target : ActionStatus
            Next status.
        result : str | None, optional
            Result text, recorded when finishing.

        Raises
        ------
        StateTransitionError
            If ``target`` is not reachable from the current status.
        """
        if target not in _ALLOWED_TRANSITIONS[self.status]:
            raise StateTransitionError(self.status.value, target.value)
        self.status = target
        if result is not None:
            self.result = result
        return self


class DispatchResult(BaseModel):
    """
    Normalized outcome of one tool dispatch.

    Parameters
    ----------
    tool_call_id : str
        Identifier of the call this answers.
    name : str
        Tool name.
    content : str
        Result text handed back to the model.
    is_error : bool, default=False
        Whether the result is classified as an error.
    timed_out : bool, default=False
        Whether the call hit the dispatch timeout.
    """

    tool_call_id: str = Field(description="Tool call identifier")
    name: str = Field(description="Tool name")
    content: str = Field(description="Result text")
    is_error: bool = Field(default=False, description="Classified as an error")
    timed_out: bool = Field(default=False, description="Hit the timeout")
