# Copyright (c) Microsoft. All rights reserved.

"""Responder contracts consumed by executors.

A responder is the external capability that turns a prompt into text, usually an LLM
call. The engine treats it as opaque: it only observes success, failure or
cancellation. Responders receive a frozen snapshot of the conversation and never get
write access to the shared context.
"""

import inspect
from collections.abc import AsyncIterable, Awaitable, Callable
from typing import Protocol, runtime_checkable

from .._types import ConversationContext

__all__ = ["FunctionResponder", "ResponderProtocol", "StreamingResponderProtocol"]


@runtime_checkable
class ResponderProtocol(Protocol):
    """Produces the text of one turn from a prompt and a read-only conversation view.

    Examples:
        .. code-block:: python

            from agent_workflows import ConversationContext, ResponderProtocol


            class EchoResponder:
                async def respond(self, prompt: str, context: ConversationContext) -> str:
                    return prompt


            assert isinstance(EchoResponder(), ResponderProtocol)
    """

    async def respond(self, prompt: str, context: ConversationContext) -> str:
        """Return the full response text for the prompt.

        Args:
            prompt: The prompt for this step.
            context: Frozen snapshot of the conversation so far.

        Returns:
            The response text. Raising any exception marks the step as failed.
        """
        ...


@runtime_checkable
class StreamingResponderProtocol(ResponderProtocol, Protocol):
    """A responder that can also stream its output as text deltas."""

    def respond_stream(self, prompt: str, context: ConversationContext) -> AsyncIterable[str]:
        """Yield the response as incremental text deltas."""
        ...


ResponderFunction = Callable[[str, ConversationContext], str | Awaitable[str]]


class FunctionResponder:
    """Adapts a plain (sync or async) callable into a responder.

    Examples:
        .. code-block:: python

            from agent_workflows import Executor, FunctionResponder

            upper = Executor("upper", FunctionResponder(lambda prompt, context: prompt.upper()))
    """

    def __init__(self, func: ResponderFunction) -> None:
        self._func = func

    async def respond(self, prompt: str, context: ConversationContext) -> str:
        result = self._func(prompt, context)
        if inspect.isawaitable(result):
            result = await result
        return str(result)

    def __repr__(self) -> str:
        name = getattr(self._func, "__name__", type(self._func).__name__)
        return f"FunctionResponder({name})"
