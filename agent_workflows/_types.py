# Copyright (c) Microsoft. All rights reserved.

from collections.abc import Iterable, Iterator, Mapping, MutableMapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, overload

from ._logging import get_logger

__all__ = ["ConversationContext", "Role", "Turn"]

logger = get_logger("agent_workflows")


class Role(str, Enum):
    """Describes who produced a turn in a conversation.

    Properties:
        USER: The caller (or a human) supplied the turn.
        AGENT: An executor produced the turn from its responder output.

    Examples:
        .. code-block:: python

            from agent_workflows import Role

            print(Role.AGENT == "agent")  # True
            print(Role("user"))  # Role.USER
    """

    USER = "user"
    AGENT = "agent"

    def __str__(self) -> str:
        """Returns the string representation of the role."""
        return self.value


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Turn:
    """One immutable unit of conversation output.

    Attributes:
        speaker_id: Id of the executor (or "user") that produced the turn. This is the
            provenance callers sort by when they need deterministic fan-in order.
        role: Whether a user or an agent produced the turn.
        text: The full text of the turn.
        timestamp: Timezone-aware UTC creation time.
        metadata: Read-only extra information, for example the handoff reason.
    """

    speaker_id: str
    role: Role
    text: str
    timestamp: datetime = field(default_factory=_utc_now)
    metadata: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self) -> None:
        if not self.speaker_id:
            raise ValueError("Turn speaker_id must be a non-empty string.")
        if not isinstance(self.role, Role):
            object.__setattr__(self, "role", Role(self.role))
        if self.timestamp.tzinfo is None:
            object.__setattr__(self, "timestamp", self.timestamp.replace(tzinfo=timezone.utc))
        if not isinstance(self.metadata, MappingProxyType):
            object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    def to_dict(self) -> dict[str, Any]:
        """Serialize the turn into JSON-compatible primitives."""
        return {
            "speaker_id": self.speaker_id,
            "role": self.role.value,
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Turn":
        """Rebuild a turn from the output of `to_dict`."""
        timestamp = data.get("timestamp")
        return cls(
            speaker_id=data["speaker_id"],
            role=Role(data["role"]),
            text=data.get("text", ""),
            timestamp=datetime.fromisoformat(timestamp) if isinstance(timestamp, str) else _utc_now(),
            metadata=data.get("metadata") or {},
        )


class ConversationContext:
    """Ordered, append-only sequence of turns shared across one workflow run.

    The execution engine owns the context while a run is in progress and freezes it when
    the run ends. Responders only ever receive frozen snapshots.

    Examples:
        .. code-block:: python

            from agent_workflows import ConversationContext, Role

            context = ConversationContext()
            context.add_turn("user", Role.USER, "Hello")
            snapshot = context.snapshot()
            assert snapshot.is_frozen
    """

    def __init__(self, turns: Iterable[Turn] | None = None) -> None:
        self._turns: list[Turn] = []
        self._frozen = False
        for turn in turns or ():
            self.append(turn)

    @property
    def turns(self) -> tuple[Turn, ...]:
        """All turns in append order."""
        return tuple(self._turns)

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    @property
    def last_turn(self) -> Turn | None:
        return self._turns[-1] if self._turns else None

    def agent_turns(self) -> list[Turn]:
        """Return the turns produced by executors, in append order."""
        return [turn for turn in self._turns if turn.role == Role.AGENT]

    def append(self, turn: Turn) -> Turn:
        """Append a turn to the end of the conversation.

        Raises:
            RuntimeError: If the context has been frozen.
            ValueError: If the turn is older than the current last turn.
        """
        if self._frozen:
            raise RuntimeError("ConversationContext is frozen; turns can no longer be appended.")
        last = self.last_turn
        if last is not None and turn.timestamp < last.timestamp:
            raise ValueError(
                f"Turn from '{turn.speaker_id}' at {turn.timestamp.isoformat()} precedes the last turn "
                f"at {last.timestamp.isoformat()}."
            )
        self._turns.append(turn)
        return turn

    def add_turn(
        self,
        speaker_id: str,
        role: Role,
        text: str,
        metadata: MutableMapping[str, Any] | None = None,
    ) -> Turn:
        """Create a turn stamped with the current time and append it.

        The timestamp never goes backwards: a wall clock step back is clamped to the
        timestamp of the previous turn.
        """
        timestamp = _utc_now()
        last = self.last_turn
        if last is not None and timestamp < last.timestamp:
            logger.debug("Clamping turn timestamp for '%s' to keep the conversation monotonic.", speaker_id)
            timestamp = last.timestamp
        turn = Turn(speaker_id=speaker_id, role=role, text=text, timestamp=timestamp, metadata=metadata or {})
        return self.append(turn)

    def snapshot(self) -> "ConversationContext":
        """Return a frozen copy holding the turns appended so far."""
        copy = ConversationContext()
        copy._turns = list(self._turns)
        copy._frozen = True
        return copy

    def freeze(self) -> "ConversationContext":
        """Freeze the context in place and return it."""
        self._frozen = True
        return self

    def to_dict(self) -> dict[str, Any]:
        return {"turns": [turn.to_dict() for turn in self._turns]}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ConversationContext":
        return cls(Turn.from_dict(item) for item in data.get("turns", []))

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[Turn]:
        return iter(tuple(self._turns))

    @overload
    def __getitem__(self, index: int) -> Turn: ...

    @overload
    def __getitem__(self, index: slice) -> list[Turn]: ...

    def __getitem__(self, index: int | slice) -> Turn | list[Turn]:
        return self._turns[index]

    def __repr__(self) -> str:
        state = "frozen" if self._frozen else "open"
        return f"ConversationContext(turns={len(self._turns)}, {state})"
