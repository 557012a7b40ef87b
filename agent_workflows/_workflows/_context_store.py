# Copyright (c) Microsoft. All rights reserved.

"""Keyed conversation storage for workflows that continue across runs.

A context store is owned by the caller and injected into each run. The engine loads the
prior conversation and the topology's policy state (for example the group chat rotation
or the active handoff executor) when a run starts and saves them back when it ends.
"""

import logging
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .._types import ConversationContext

logger = logging.getLogger(__name__)

__all__ = ["ContextStore", "InMemoryContextStore", "StoredConversation"]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class StoredConversation:
    """A conversation held by a context store.

    Attributes:
        conversation_id: Key of the conversation.
        context: Frozen conversation as saved by the last run.
        policy_state: Opaque per-topology state saved by the last run.
        created_at: When the entry was created.
        updated_at: When the entry was last saved.
    """

    conversation_id: str
    context: ConversationContext = field(default_factory=lambda: ConversationContext().freeze())
    policy_state: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_utc_now)
    updated_at: datetime = field(default_factory=_utc_now)


class ContextStore(ABC):
    """Abstract base class for conversation storage between workflow runs."""

    @abstractmethod
    def get_or_create(self, conversation_id: str) -> StoredConversation:
        """Return the stored conversation, creating an empty one when the id is unknown."""
        pass

    @abstractmethod
    def get(self, conversation_id: str) -> StoredConversation | None:
        """Return the stored conversation or None if not found."""
        pass

    @abstractmethod
    def save(
        self,
        conversation_id: str,
        context: ConversationContext,
        policy_state: Mapping[str, Any] | None = None,
    ) -> StoredConversation:
        """Store the conversation and policy state of a finished run.

        Args:
            conversation_id: Key of the conversation.
            context: Conversation to store. A frozen snapshot is kept.
            policy_state: Per-topology state to round-trip to the next run.

        Returns:
            The stored entry.
        """
        pass

    @abstractmethod
    def evict(self, conversation_id: str) -> bool:
        """Remove a conversation. Returns whether it existed."""
        pass

    @abstractmethod
    def list_ids(self) -> list[str]:
        """Return the ids of the stored conversations."""
        pass


class InMemoryContextStore(ContextStore):
    """In-memory context store with optional size and idle-time limits.

    Args:
        max_entries: Maximum number of conversations kept. The least recently used entry
            is evicted when a new one would exceed the limit.
        ttl: Seconds an entry may stay unused before it expires.
        clock: Monotonic clock used for expiry, replaceable in tests.

    Examples:
        .. code-block:: python

            store = InMemoryContextStore(max_entries=100, ttl=3600)
            result = await engine.run(graph, "hello", store=store, conversation_id="user-42")
            store.get("user-42").context  # conversation after the run
    """

    def __init__(
        self,
        max_entries: int | None = None,
        ttl: float | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be at least 1.")
        if ttl is not None and ttl <= 0:
            raise ValueError("ttl must be positive.")
        self._max_entries = max_entries
        self._ttl = ttl
        self._clock = clock
        self._entries: OrderedDict[str, StoredConversation] = OrderedDict()
        self._last_access: dict[str, float] = {}

    def _expire(self) -> None:
        if self._ttl is None:
            return
        now = self._clock()
        expired = [key for key, accessed in self._last_access.items() if now - accessed > self._ttl]
        for key in expired:
            logger.debug(f"Conversation '{key}' expired after {self._ttl} seconds without use.")
            self._remove(key)

    def _remove(self, conversation_id: str) -> bool:
        self._last_access.pop(conversation_id, None)
        return self._entries.pop(conversation_id, None) is not None

    def _touch(self, conversation_id: str) -> None:
        self._entries.move_to_end(conversation_id)
        self._last_access[conversation_id] = self._clock()

    def _insert(self, entry: StoredConversation) -> None:
        self._entries[entry.conversation_id] = entry
        self._touch(entry.conversation_id)
        if self._max_entries is not None:
            while len(self._entries) > self._max_entries:
                oldest = next(iter(self._entries))
                logger.debug(f"Evicting least recently used conversation '{oldest}'.")
                self._remove(oldest)

    def get_or_create(self, conversation_id: str) -> StoredConversation:
        if not conversation_id:
            raise ValueError("conversation_id must be a non-empty string.")
        self._expire()
        entry = self._entries.get(conversation_id)
        if entry is None:
            entry = StoredConversation(conversation_id=conversation_id)
            self._insert(entry)
        else:
            self._touch(conversation_id)
        return entry

    def get(self, conversation_id: str) -> StoredConversation | None:
        self._expire()
        entry = self._entries.get(conversation_id)
        if entry is not None:
            self._touch(conversation_id)
        return entry

    def save(
        self,
        conversation_id: str,
        context: ConversationContext,
        policy_state: Mapping[str, Any] | None = None,
    ) -> StoredConversation:
        if not conversation_id:
            raise ValueError("conversation_id must be a non-empty string.")
        self._expire()
        snapshot = context if context.is_frozen else context.snapshot()
        entry = self._entries.get(conversation_id)
        if entry is None:
            entry = StoredConversation(
                conversation_id=conversation_id,
                context=snapshot,
                policy_state=dict(policy_state or {}),
            )
            self._insert(entry)
        else:
            entry.context = snapshot
            entry.policy_state = dict(policy_state or {})
            entry.updated_at = _utc_now()
            self._touch(conversation_id)
        return entry

    def evict(self, conversation_id: str) -> bool:
        return self._remove(conversation_id)

    def list_ids(self) -> list[str]:
        self._expire()
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
