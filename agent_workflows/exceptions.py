# Copyright (c) Microsoft. All rights reserved.

import logging
from typing import Any

logger = logging.getLogger("agent_workflows")

__all__ = [
    "AgentWorkflowException",
    "DuplicateExecutorIdError",
    "ExceededHandoffLimitError",
    "InvalidTopologyError",
    "ResponderError",
    "WorkflowCancelledError",
    "WorkflowException",
]


class AgentWorkflowException(Exception):
    """Base exceptions for the agent workflows package.

    Automatically logs the message as debug, or at the supplied log level.
    """

    def __init__(
        self,
        message: str,
        inner_exception: Exception | None = None,
        log_level: int | None = logging.DEBUG,
        *args: Any,
        **kwargs: Any,
    ):
        """Create an AgentWorkflowException.

        This emits a log message at the given level, pass None as log_level to skip it.
        """
        if log_level is not None:
            logger.log(log_level, message, exc_info=inner_exception)
        self.inner_exception = inner_exception
        super().__init__(message, *args)  # type: ignore


class WorkflowException(AgentWorkflowException):
    """Base exception for workflow construction and execution problems."""

    pass


class InvalidTopologyError(WorkflowException):
    """A requested topology does not fit the supplied executors or edges.

    Raised by the builder only, never while a workflow runs.
    """

    pass


class DuplicateExecutorIdError(InvalidTopologyError):
    """Two executors in one graph share the same id."""

    def __init__(self, executor_id: str, **kwargs: Any) -> None:
        self.executor_id = executor_id
        super().__init__(f"Duplicate executor id '{executor_id}' in workflow graph.", **kwargs)


class ResponderError(WorkflowException):
    """The external responder behind an executor failed."""

    def __init__(self, executor_id: str, message: str | None = None, **kwargs: Any) -> None:
        self.executor_id = executor_id
        super().__init__(message or f"Responder for executor '{executor_id}' failed.", **kwargs)


class ExceededHandoffLimitError(WorkflowException):
    """A handoff run transferred control more often than its configured ceiling."""

    def __init__(self, max_handoffs: int, **kwargs: Any) -> None:
        self.max_handoffs = max_handoffs
        super().__init__(f"Handoff limit of {max_handoffs} transfers exceeded.", **kwargs)


class WorkflowCancelledError(WorkflowException):
    """An external cancellation signal was observed mid-run."""

    pass
