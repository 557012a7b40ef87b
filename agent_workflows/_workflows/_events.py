# Copyright (c) Microsoft. All rights reserved.

import traceback as _traceback
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from .._types import ConversationContext
from ..exceptions import ResponderError

if TYPE_CHECKING:
    from ._routing import RoutingDecision

__all__ = [
    "AgentRunUpdateEvent",
    "ExecutorCompletedEvent",
    "ExecutorEvent",
    "ExecutorFailedEvent",
    "ExecutorStartedEvent",
    "HandoffRequestedEvent",
    "RoutingDecisionEvent",
    "WorkflowErrorDetails",
    "WorkflowEvent",
    "WorkflowFailedEvent",
    "WorkflowOutputEvent",
    "WorkflowStartedEvent",
]


@dataclass
class WorkflowErrorDetails:
    """Structured error information surfaced in failure events."""

    error_type: str
    message: str
    executor_id: str | None = None
    traceback: str | None = None

    @classmethod
    def from_exception(cls, exc: BaseException, *, executor_id: str | None = None) -> "WorkflowErrorDetails":
        tb = "".join(_traceback.format_exception(type(exc), exc, exc.__traceback__))
        if executor_id is None and isinstance(exc, ResponderError):
            executor_id = exc.executor_id
        return cls(error_type=exc.__class__.__name__, message=str(exc), executor_id=executor_id, traceback=tb)


class WorkflowEvent:
    """Base class for workflow events."""

    def __init__(self, data: Any | None = None):
        """Initialize the workflow event with optional data."""
        self.data = data

    def __repr__(self) -> str:
        """Return a string representation of the workflow event."""
        return f"{self.__class__.__name__}(data={self.data if self.data is not None else 'None'})"


class WorkflowStartedEvent(WorkflowEvent):
    """Built-in lifecycle event emitted when a workflow run begins."""

    def __init__(self, topology: str):
        super().__init__(topology)
        self.topology = topology


class ExecutorEvent(WorkflowEvent):
    """Base class for executor events."""

    def __init__(self, executor_id: str, data: Any | None = None):
        """Initialize the executor event with an executor ID and optional data."""
        super().__init__(data)
        self.executor_id = executor_id

    def __repr__(self) -> str:
        """Return a string representation of the executor event."""
        return f"{self.__class__.__name__}(executor_id={self.executor_id}, data={self.data})"


class ExecutorStartedEvent(ExecutorEvent):
    """Event triggered when an executor gets the floor and its responder is called."""


class AgentRunUpdateEvent(ExecutorEvent):
    """Event carrying one streamed text delta from an executor's responder."""

    def __init__(self, executor_id: str, text_delta: str):
        super().__init__(executor_id, text_delta)
        self.text_delta = text_delta


class ExecutorCompletedEvent(ExecutorEvent):
    """Event triggered when an executor's turn has been appended to the conversation."""

    def __init__(self, executor_id: str, output: str, duration: timedelta | None = None):
        super().__init__(executor_id, output)
        self.output = output
        self.duration = duration


class ExecutorFailedEvent(ExecutorEvent):
    """Event triggered when an executor's responder raised."""

    def __init__(self, executor_id: str, error: BaseException):
        super().__init__(executor_id, error)
        self.error = error
        self.details = WorkflowErrorDetails.from_exception(error, executor_id=executor_id)


class HandoffRequestedEvent(WorkflowEvent):
    """Event triggered when the active executor transfers control to a declared target."""

    def __init__(self, source_id: str, target_id: str, reason: str | None = None):
        super().__init__({"from": source_id, "to": target_id, "reason": reason})
        self.source_id = source_id
        self.target_id = target_id
        self.reason = reason

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(source_id={self.source_id}, target_id={self.target_id})"


class RoutingDecisionEvent(WorkflowEvent):
    """Event carrying the routing decision derived from a triage executor's output."""

    def __init__(self, decision: "RoutingDecision"):
        super().__init__(decision)
        self.decision = decision


class WorkflowOutputEvent(WorkflowEvent):
    """Terminal event of a successful run.

    Attributes:
        context: The frozen conversation context.
        output: Text of the last agent turn, if any.
        failures: Branch failures of a concurrent run, keyed by executor id.
        state: Policy state to persist between runs (for example the turn selector state).
    """

    def __init__(
        self,
        context: ConversationContext,
        output: str | None = None,
        failures: Mapping[str, BaseException] | None = None,
        state: Mapping[str, Any] | None = None,
    ):
        super().__init__(context)
        self.context = context
        self.output = output
        self.failures = dict(failures or {})
        self.state = dict(state or {})

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(turns={len(self.context)}, failures={list(self.failures)})"


class WorkflowFailedEvent(WorkflowEvent):
    """Terminal event of a run that was aborted or cancelled.

    The context holds every turn completed before the failure.
    """

    def __init__(
        self,
        details: WorkflowErrorDetails,
        context: ConversationContext,
        error: BaseException | None = None,
        state: Mapping[str, Any] | None = None,
    ):
        super().__init__(details)
        self.details = details
        self.context = context
        self.error = error
        self.state = dict(state or {})

    @property
    def executor_id(self) -> str | None:
        return self.details.executor_id

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(error_type={self.details.error_type}, message={self.details.message})"
