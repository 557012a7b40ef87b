# Copyright (c) Microsoft. All rights reserved.

import pytest

from agent_workflows import (
    ConversationContext,
    ExecutionEngine,
    Executor,
    FunctionResponder,
    InMemoryContextStore,
    Role,
    StoredConversation,
    WorkflowBuilder,
    WorkflowSettings,
)


class _FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _context(*texts: str) -> ConversationContext:
    context = ConversationContext()
    for text in texts:
        context.add_turn("agent", Role.AGENT, text)
    return context


def test_get_or_create_returns_same_entry():
    store = InMemoryContextStore()
    first = store.get_or_create("c1")
    assert isinstance(first, StoredConversation)
    assert len(first.context) == 0
    assert first.context.is_frozen
    assert store.get_or_create("c1") is first
    assert store.list_ids() == ["c1"]


def test_get_unknown_returns_none():
    assert InMemoryContextStore().get("missing") is None


def test_save_keeps_frozen_snapshot():
    store = InMemoryContextStore()
    context = _context("one")
    entry = store.save("c1", context, {"turn_selector": {"last_speaker_id": "a"}})
    context.add_turn("agent", Role.AGENT, "two")

    assert entry.context.is_frozen
    assert [turn.text for turn in entry.context] == ["one"]
    assert entry.policy_state == {"turn_selector": {"last_speaker_id": "a"}}

    updated = store.save("c1", _context("one", "two"))
    assert updated is entry
    assert len(entry.context) == 2
    assert entry.policy_state == {}
    assert entry.updated_at >= entry.created_at


def test_evict():
    store = InMemoryContextStore()
    store.get_or_create("c1")
    assert store.evict("c1")
    assert not store.evict("c1")
    assert store.list_ids() == []


def test_lru_eviction():
    store = InMemoryContextStore(max_entries=2)
    store.get_or_create("a")
    store.get_or_create("b")
    store.get("a")
    store.get_or_create("c")
    assert store.list_ids() == ["a", "c"]
    assert len(store) == 2


def test_ttl_expiry():
    clock = _FakeClock()
    store = InMemoryContextStore(ttl=10, clock=clock)
    store.get_or_create("stale")
    clock.now = 5
    store.get_or_create("fresh")
    clock.now = 12
    assert store.get("stale") is None
    assert store.get("fresh") is not None


def test_invalid_limits():
    with pytest.raises(ValueError):
        InMemoryContextStore(max_entries=0)
    with pytest.raises(ValueError):
        InMemoryContextStore(ttl=0)
    with pytest.raises(ValueError):
        InMemoryContextStore().get_or_create("")


async def test_engine_saves_and_reloads_conversation():
    engine = ExecutionEngine(WorkflowSettings(record_input=True))
    graph = WorkflowBuilder().build_sequential([
        Executor("echo", FunctionResponder(lambda prompt, context: f"{prompt} ({len(context)} before)"))
    ])
    store = InMemoryContextStore()

    await engine.run(graph, "hi", store=store, conversation_id="chat")
    result = await engine.run(graph, "again", store=store, conversation_id="chat")

    stored = store.get("chat")
    assert stored is not None
    assert [turn.text for turn in stored.context] == ["hi", "hi (1 before)", "again", "again (3 before)"]
    assert result.get_final_context() is stored.context


async def test_engine_saves_on_failure():
    def broken(prompt: str, context: ConversationContext) -> str:
        raise RuntimeError("down")

    engine = ExecutionEngine(WorkflowSettings(record_input=False))
    graph = WorkflowBuilder().build_sequential([
        Executor("ok", FunctionResponder(lambda prompt, context: "saved")),
        Executor("broken", FunctionResponder(broken)),
    ])
    store = InMemoryContextStore()

    result = await engine.run(graph, "x", store=store, conversation_id="chat")

    assert result.get_failure() is not None
    stored = store.get("chat")
    assert stored is not None
    assert [turn.text for turn in stored.context] == ["saved"]


async def test_store_requires_conversation_id():
    engine = ExecutionEngine()
    graph = WorkflowBuilder().build_sequential([Executor("a", FunctionResponder(lambda prompt, context: "a"))])
    with pytest.raises(ValueError, match="together"):
        await engine.run(graph, "x", store=InMemoryContextStore())
