# Copyright (c) Microsoft. All rights reserved.

import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from .._types import ConversationContext
from ..exceptions import ResponderError
from ..observability import OBSERVABILITY_SETTINGS, capture_exception, create_executor_span
from ._responder import ResponderProtocol, StreamingResponderProtocol

logger = logging.getLogger(__name__)

__all__ = ["Executor"]

UpdateCallback = Callable[[str], Awaitable[None]]


class Executor:
    """Binds a responder to an identity that participates in workflows.

    Executors are created once and reused across runs. They hold no per-conversation
    state, so concurrent runs against different contexts are safe.

    Args:
        id: Unique identifier of the executor within a graph.
        responder: The external capability producing text for this executor.
        description: Human-readable description, shown to triage and handoff executors.
        label: Optional routing label matched against triage decisions besides the id.
        handoff_targets: Executors (or their ids) this executor may transfer control to
            in a handoff workflow.

    Examples:
        .. code-block:: python

            from agent_workflows import Executor, FunctionResponder

            math = Executor("math_tutor", FunctionResponder(answer_math), description="Answers math questions")
            triage = Executor("triage", triage_responder, handoff_targets=[math])
    """

    def __init__(
        self,
        id: str,
        responder: ResponderProtocol,
        *,
        description: str | None = None,
        label: str | None = None,
        handoff_targets: Sequence["Executor | str"] | None = None,
    ) -> None:
        if not id or not id.strip():
            raise ValueError("Executor id must be a non-empty string.")
        if not isinstance(responder, ResponderProtocol):
            raise TypeError(f"Executor '{id}' requires a responder exposing an async 'respond' method.")
        self._id = id
        self._responder = responder
        self.description = description or ""
        self.label = label
        self._handoff_targets = tuple(
            target.id if isinstance(target, Executor) else target for target in (handoff_targets or ())
        )

    @property
    def id(self) -> str:
        return self._id

    @property
    def responder(self) -> ResponderProtocol:
        return self._responder

    @property
    def handoff_targets(self) -> tuple[str, ...]:
        """Ids of the executors this executor declared as legal handoff targets."""
        return self._handoff_targets

    @property
    def routing_names(self) -> tuple[str, ...]:
        """Names a triage decision may use to refer to this executor."""
        if self.label and self.label.lower() != self._id.lower():
            return (self._id, self.label)
        return (self._id,)

    async def invoke(
        self,
        prompt: str,
        context: ConversationContext,
        *,
        on_update: UpdateCallback | None = None,
        topology: str | None = None,
    ) -> str:
        """Run the responder for one step and return its full output.

        When the responder can stream and ``on_update`` is supplied, every text delta is
        forwarded to ``on_update`` before the joined text is returned.

        Raises:
            ResponderError: The responder raised. Cancellation is never wrapped.
        """
        with create_executor_span(self._id, type(self).__name__, topology=topology) as span:
            if OBSERVABILITY_SETTINGS.SENSITIVE_DATA_ENABLED:
                span.set_attribute("executor.prompt", prompt)
            try:
                if on_update is not None and isinstance(self._responder, StreamingResponderProtocol):
                    chunks: list[str] = []
                    async for delta in self._responder.respond_stream(prompt, context):
                        if not delta:
                            continue
                        chunks.append(delta)
                        await on_update(delta)
                    output = "".join(chunks)
                else:
                    output = await self._responder.respond(prompt, context)
            except ResponderError as exc:
                capture_exception(span, exc)
                raise
            except Exception as exc:
                capture_exception(span, exc)
                raise ResponderError(
                    self._id, f"Responder for executor '{self._id}' failed: {exc}", inner_exception=exc
                ) from exc
            if not isinstance(output, str):
                output = str(output)
            if OBSERVABILITY_SETTINGS.SENSITIVE_DATA_ENABLED:
                span.set_attribute("executor.output", output)
            logger.debug(f"Executor '{self._id}' produced {len(output)} characters.")
            return output

    def to_dict(self) -> dict[str, Any]:
        """Describe the executor without its responder."""
        return {
            "id": self._id,
            "description": self.description,
            "label": self.label,
            "handoff_targets": list(self._handoff_targets),
        }

    def __repr__(self) -> str:
        return f"Executor(id={self._id!r})"
