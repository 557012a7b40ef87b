# Copyright (c) Microsoft. All rights reserved.

from typing import ClassVar

from pydantic import Field

from .._pydantic import AWBaseSettings
from ._graph import DEFAULT_MAX_HANDOFFS, DEFAULT_MAX_ITERATIONS

__all__ = ["WorkflowSettings"]


class WorkflowSettings(AWBaseSettings):
    """Settings shared by the workflow builder and the execution engine.

    The settings are first read from keyword arguments, then from environment variables
    prefixed with 'AGENT_WORKFLOWS_', and finally from a .env file if one is supplied.

    Keyword Args:
        max_iterations: Ceiling on group chat turns per run.
            Can be set via environment variable AGENT_WORKFLOWS_MAX_ITERATIONS.
        max_handoffs: Ceiling on transfers in one handoff run.
            Can be set via environment variable AGENT_WORKFLOWS_MAX_HANDOFFS.
        fallback_candidate: Id of the routed candidate used when the triage decision
            matches no candidate. Defaults to the first candidate.
            Can be set via environment variable AGENT_WORKFLOWS_FALLBACK_CANDIDATE.
        cancellation_timeout: Seconds to wait for in-flight responder calls to unwind
            after cancellation. Can be set via environment variable AGENT_WORKFLOWS_CANCELLATION_TIMEOUT.
        record_input: Append the initial input as a user turn before the first step.
            Can be set via environment variable AGENT_WORKFLOWS_RECORD_INPUT.
        env_file_path: Path to a .env file to read the settings from.
        env_file_encoding: Encoding of the .env file, defaults to 'utf-8'.

    Examples:
        .. code-block:: python

            from agent_workflows import WorkflowSettings

            # Using environment variables
            # Set AGENT_WORKFLOWS_MAX_ITERATIONS=6
            settings = WorkflowSettings()

            # Or passing parameters directly
            settings = WorkflowSettings(max_iterations=6, fallback_candidate="developer")
    """

    env_prefix: ClassVar[str] = "AGENT_WORKFLOWS_"

    max_iterations: int = Field(default=DEFAULT_MAX_ITERATIONS, ge=1)
    max_handoffs: int = Field(default=DEFAULT_MAX_HANDOFFS, ge=0)
    fallback_candidate: str | None = None
    cancellation_timeout: float = Field(default=5.0, ge=0)
    record_input: bool = False
