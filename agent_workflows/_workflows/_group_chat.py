# Copyright (c) Microsoft. All rights reserved.

"""Turn selection for group chat workflows.

A turn selector is the pluggable policy that decides which participant speaks next in
a group chat, or that the conversation is over. The engine owns the per-run
`TurnSelectorState` and hands it to the selector on every call; selectors themselves
keep no per-conversation state so one instance can serve concurrent runs.

- RoundRobinTurnSelector: cycles participants in declaration order, ignores content and
  relies on the iteration ceiling to finish.
- TerminationPhraseSelector: wraps another selector and finishes early once the latest
  agent turn contains a closing phrase.
- FunctionTurnSelector: adapts a plain callable.
"""

import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any, Protocol, TypeAlias, runtime_checkable

from pydantic import BaseModel, Field

from .._types import ConversationContext, Role
from ._executor import Executor

logger = logging.getLogger(__name__)

__all__ = [
    "FunctionTurnSelector",
    "NextSpeaker",
    "RoundRobinTurnSelector",
    "SpeakerSelection",
    "Terminate",
    "TerminationPhraseSelector",
    "TurnSelector",
    "TurnSelectorState",
]


class TurnSelectorState(BaseModel):
    """Per-run group chat bookkeeping kept by the engine.

    The whole model is saved as policy state after every turn. Only ``last_speaker_id``
    is restored by the next run; ``iteration_count`` restarts at zero and the saved value
    is informational.

    Attributes:
        iteration_count: Number of turns produced in the current run.
        max_iterations: Ceiling on turns for the run.
        last_speaker_id: Participant that spoke last, carried across runs for rotation.
    """

    iteration_count: int = Field(default=0, ge=0)
    max_iterations: int = Field(default=10, ge=1)
    last_speaker_id: str | None = None

    @property
    def exhausted(self) -> bool:
        return self.iteration_count >= self.max_iterations


@dataclass(frozen=True)
class NextSpeaker:
    """Selector result naming the participant that speaks next."""

    executor_id: str


@dataclass(frozen=True)
class Terminate:
    """Selector result ending the group chat."""

    reason: str | None = None


SpeakerSelection: TypeAlias = NextSpeaker | Terminate


@runtime_checkable
class TurnSelector(Protocol):
    """Policy choosing the next speaker of a group chat or ending it."""

    def select_next(
        self,
        context: ConversationContext,
        participants: Sequence[Executor],
        state: TurnSelectorState,
    ) -> SpeakerSelection | Awaitable[SpeakerSelection]:
        """Return the next speaker or a terminate signal.

        Args:
            context: Frozen snapshot of the conversation so far.
            participants: Participants in declaration order.
            state: Read-only view of the engine's selector state for this run.
        """
        ...


class RoundRobinTurnSelector:
    """Cycles participants in declaration order, starting after the last speaker.

    Content is ignored; the conversation ends when the engine reaches ``max_iterations``.
    """

    def select_next(
        self,
        context: ConversationContext,
        participants: Sequence[Executor],
        state: TurnSelectorState,
    ) -> SpeakerSelection:
        ids = [participant.id for participant in participants]
        if state.last_speaker_id in ids:
            index = (ids.index(state.last_speaker_id) + 1) % len(ids)
        else:
            index = 0
        return NextSpeaker(ids[index])


class TerminationPhraseSelector:
    """Ends the conversation early when the latest agent turn contains a closing phrase.

    Speaker choice is delegated to ``inner`` (round-robin by default).

    Args:
        phrases: Phrases signalling that the discussion reached a conclusion.
        inner: Selector choosing speakers while the conversation continues.
        case_sensitive: Whether phrase matching respects case.

    Examples:
        .. code-block:: python

            selector = TerminationPhraseSelector(["in conclusion", "final summary"])
            graph = WorkflowBuilder().build_group_chat([optimist, pessimist, realist], selector)
    """

    def __init__(
        self,
        phrases: Iterable[str],
        inner: TurnSelector | None = None,
        *,
        case_sensitive: bool = False,
    ) -> None:
        self._phrases = tuple(phrase for phrase in phrases if phrase)
        if not self._phrases:
            raise ValueError("TerminationPhraseSelector requires at least one non-empty phrase.")
        self._inner = inner or RoundRobinTurnSelector()
        self._case_sensitive = case_sensitive

    def _matching_phrase(self, text: str) -> str | None:
        haystack = text if self._case_sensitive else text.lower()
        for phrase in self._phrases:
            needle = phrase if self._case_sensitive else phrase.lower()
            if needle in haystack:
                return phrase
        return None

    async def select_next(
        self,
        context: ConversationContext,
        participants: Sequence[Executor],
        state: TurnSelectorState,
    ) -> SpeakerSelection:
        last = context.last_turn
        if last is not None and last.role == Role.AGENT:
            phrase = self._matching_phrase(last.text)
            if phrase is not None:
                logger.debug(f"Turn from '{last.speaker_id}' contains closing phrase '{phrase}'.")
                return Terminate(reason=f"'{last.speaker_id}' concluded the discussion")
        selection = self._inner.select_next(context, participants, state)
        if inspect.isawaitable(selection):
            selection = await selection
        return selection


SelectorFunction = Callable[
    [ConversationContext, Sequence[Executor], TurnSelectorState],
    SpeakerSelection | Awaitable[SpeakerSelection],
]


class FunctionTurnSelector:
    """Adapts a plain (sync or async) callable into a turn selector."""

    def __init__(self, func: SelectorFunction) -> None:
        self._func = func

    async def select_next(
        self,
        context: ConversationContext,
        participants: Sequence[Executor],
        state: TurnSelectorState,
    ) -> SpeakerSelection:
        result: Any = self._func(context, participants, state)
        if inspect.isawaitable(result):
            result = await result
        return result  # type: ignore[no-any-return]
