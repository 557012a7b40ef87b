# Copyright (c) Microsoft. All rights reserved.

from collections.abc import Mapping
from enum import Enum
from time import time_ns
from typing import TYPE_CHECKING, Any, ClassVar

from opentelemetry import trace

from . import __version__ as version_info
from ._logging import get_logger
from ._pydantic import AWBaseSettings

if TYPE_CHECKING:  # pragma: no cover
    from opentelemetry.trace import Tracer
    from opentelemetry.util._decorator import _AgnosticContextManager  # type: ignore[reportPrivateUsage]

__all__ = [
    "OBSERVABILITY_SETTINGS",
    "ObservabilitySettings",
    "OtelAttr",
    "capture_exception",
    "create_executor_span",
    "create_workflow_span",
    "get_tracer",
    "workflow_tracer",
]


logger = get_logger()


class OtelAttr(str, Enum):
    """Attribute, span and event names recorded by workflow tracing."""

    ERROR_TYPE = "error.type"
    ERROR_MESSAGE = "error.message"

    # Workflow attributes
    WORKFLOW_NAME = "workflow.name"
    WORKFLOW_TOPOLOGY = "workflow.topology"
    WORKFLOW_CONVERSATION_ID = "workflow.conversation_id"
    WORKFLOW_BUILD_SPAN = "workflow.build"
    WORKFLOW_RUN_SPAN = "workflow.run"
    WORKFLOW_STARTED = "workflow.started"
    WORKFLOW_COMPLETED = "workflow.completed"
    WORKFLOW_ERROR = "workflow.error"
    WORKFLOW_TURN_COUNT = "workflow.turn_count"
    # Workflow Build attributes
    BUILD_STARTED = "build.started"
    BUILD_VALIDATION_COMPLETED = "build.validation_completed"
    BUILD_COMPLETED = "build.completed"
    BUILD_ERROR = "build.error"
    BUILD_ERROR_MESSAGE = "build.error.message"
    BUILD_ERROR_TYPE = "build.error.type"
    # Workflow executor attributes
    EXECUTOR_PROCESS_SPAN = "executor.process"
    EXECUTOR_ID = "executor.id"
    EXECUTOR_TYPE = "executor.type"
    # Handoff and routing events
    HANDOFF_SOURCE_ID = "handoff.source_id"
    HANDOFF_TARGET_ID = "handoff.target_id"
    WORKFLOW_HANDOFF = "workflow.handoff"
    WORKFLOW_ROUTING_DECISION = "workflow.routing_decision"
    ROUTING_OUTCOME = "routing.outcome"

    def __repr__(self) -> str:
        """Return the string representation of the enum member."""
        return self.value

    def __str__(self) -> str:
        """Return the string representation of the enum member."""
        return self.value


class ObservabilitySettings(AWBaseSettings):
    """Settings for workflow tracing.

    If the environment variables are not found, the settings can
    be loaded from a .env file with the encoding 'utf-8'.

    Warning:
        Sensitive events should only be enabled on test and development environments.

    Keyword Args:
        enable_otel: Enable OpenTelemetry spans for builds, runs and executor calls. Default is False.
            Can be set via environment variable ENABLE_OTEL.
        enable_sensitive_data: Record prompts and responder output on executor spans. Default is False.
            Can be set via environment variable ENABLE_SENSITIVE_DATA.

    Examples:
        .. code-block:: python

            from agent_workflows.observability import ObservabilitySettings

            # Using environment variables
            # Set ENABLE_OTEL=true
            settings = ObservabilitySettings()

            # Or passing parameters directly
            settings = ObservabilitySettings(enable_otel=True)
    """

    env_prefix: ClassVar[str] = ""

    enable_otel: bool = False
    enable_sensitive_data: bool = False

    @property
    def ENABLED(self) -> bool:
        """Tracing is enabled if either plain or sensitive diagnostics are enabled."""
        return self.enable_otel or self.enable_sensitive_data

    @property
    def SENSITIVE_DATA_ENABLED(self) -> bool:
        """Check if sensitive events are enabled."""
        return self.enable_sensitive_data


def get_tracer(
    instrumenting_module_name: str = "agent_workflows",
    instrumenting_library_version: str = version_info,
    schema_url: str | None = None,
    attributes: dict[str, Any] | None = None,
) -> "trace.Tracer":
    """Returns a Tracer for use by the given instrumentation library.

    This function is a convenience wrapper for trace.get_tracer(). The tracer comes from the
    globally configured TracerProvider.

    Args:
        instrumenting_module_name: The name of the instrumenting library.
            Default is "agent_workflows".
        instrumenting_library_version: The version of the instrumenting library.
            Default is the current agent_workflows version.
        schema_url: Optional schema URL for the emitted telemetry.
        attributes: Optional attributes associated with the emitted telemetry.

    Returns:
        A Tracer instance for creating spans.
    """
    return trace.get_tracer(
        instrumenting_module_name=instrumenting_module_name,
        instrumenting_library_version=instrumenting_library_version,
        schema_url=schema_url,
        attributes=attributes,
    )


global OBSERVABILITY_SETTINGS
OBSERVABILITY_SETTINGS: ObservabilitySettings = ObservabilitySettings()


def workflow_tracer() -> "Tracer":
    """Get a workflow tracer or a no-op tracer if not enabled."""
    global OBSERVABILITY_SETTINGS
    return get_tracer() if OBSERVABILITY_SETTINGS.ENABLED else trace.NoOpTracer()


def create_workflow_span(
    name: str,
    attributes: Mapping[str, str | int] | None = None,
    kind: trace.SpanKind = trace.SpanKind.INTERNAL,
) -> "_AgnosticContextManager[trace.Span]":
    """Create a generic workflow span."""
    return workflow_tracer().start_as_current_span(name, kind=kind, attributes=attributes)


def create_executor_span(
    executor_id: str,
    executor_type: str,
    *,
    topology: str | None = None,
) -> "_AgnosticContextManager[trace.Span]":
    """Create an executor processing span.

    Executor spans are created as children of the current workflow run span, one per
    responder call. Concurrent branches each get their own span under the same parent.

    Args:
        executor_id: The unique ID of the executor being invoked.
        executor_type: The type of the executor (class name).
        topology: The topology of the workflow the executor runs in.
    """
    attributes: dict[str, str] = {
        OtelAttr.EXECUTOR_ID: executor_id,
        OtelAttr.EXECUTOR_TYPE: executor_type,
    }
    if topology is not None:
        attributes[OtelAttr.WORKFLOW_TOPOLOGY] = topology
    return workflow_tracer().start_as_current_span(
        OtelAttr.EXECUTOR_PROCESS_SPAN,
        kind=trace.SpanKind.INTERNAL,
        attributes=attributes,
    )


def capture_exception(span: trace.Span, exception: Exception, timestamp: int | None = None) -> None:
    """Set an error for spans."""
    span.set_attribute(OtelAttr.ERROR_TYPE, type(exception).__name__)
    span.record_exception(exception=exception, timestamp=timestamp or time_ns())
    span.set_status(status=trace.StatusCode.ERROR, description=repr(exception))
