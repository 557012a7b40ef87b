# Copyright (c) Microsoft. All rights reserved.

from collections.abc import Sequence

import pytest

from agent_workflows import (
    ConversationContext,
    ExecutionEngine,
    Executor,
    FunctionResponder,
    FunctionTurnSelector,
    InMemoryContextStore,
    NextSpeaker,
    RoundRobinTurnSelector,
    Terminate,
    TerminationPhraseSelector,
    TurnSelectorState,
    WorkflowBuilder,
    WorkflowSettings,
)


def _participant(name: str, reply: str | None = None) -> Executor:
    return Executor(name, FunctionResponder(lambda prompt, context: reply or f"{name} speaks"))


@pytest.fixture
def engine() -> ExecutionEngine:
    return ExecutionEngine(WorkflowSettings(record_input=False))


@pytest.fixture
def participants() -> list[Executor]:
    return [_participant("X"), _participant("Y"), _participant("Z")]


async def test_round_robin_until_max_iterations(engine: ExecutionEngine, participants: list[Executor]):
    graph = WorkflowBuilder().build_group_chat(participants, max_iterations=6)

    result = await engine.run(graph, "Debate remote work")

    context = result.get_final_context()
    assert context is not None
    assert [turn.speaker_id for turn in context] == ["X", "Y", "Z", "X", "Y", "Z"]
    output = result.get_output_event()
    assert output is not None
    state = TurnSelectorState.model_validate(output.state["turn_selector"])
    assert state.iteration_count == 6 <= state.max_iterations
    assert state.last_speaker_id == "Z"


async def test_every_speaker_gets_the_topic(engine: ExecutionEngine):
    prompts: list[tuple[str, int]] = []

    def speaker(name: str) -> Executor:
        def respond(prompt: str, context: ConversationContext) -> str:
            prompts.append((prompt, len(context)))
            return name

        return Executor(name, FunctionResponder(respond))

    graph = WorkflowBuilder().build_group_chat([speaker("optimist"), speaker("pessimist")], max_iterations=3)
    await engine.run(graph, "Is AI good?")

    assert prompts == [("Is AI good?", 0), ("Is AI good?", 1), ("Is AI good?", 2)]


async def test_termination_phrase_ends_early(engine: ExecutionEngine):
    participants = [
        _participant("optimist", "AI will help"),
        _participant("pessimist", "AI will hurt"),
        _participant("realist", "In conclusion, it depends"),
        _participant("skeptic", "unreachable"),
    ]
    selector = TerminationPhraseSelector(["in conclusion"])
    graph = WorkflowBuilder().build_group_chat(participants, selector, max_iterations=10)

    result = await engine.run(graph, "Is AI good?")

    context = result.get_final_context()
    assert context is not None
    assert [turn.speaker_id for turn in context] == ["optimist", "pessimist", "realist"]


async def test_terminate_before_first_turn_is_ignored(engine: ExecutionEngine, participants: list[Executor]):
    graph = WorkflowBuilder().build_group_chat(
        participants, FunctionTurnSelector(lambda context, members, state: Terminate("nothing to say"))
    )

    result = await engine.run(graph, "topic")

    context = result.get_final_context()
    assert context is not None
    assert [turn.speaker_id for turn in context] == ["X"]


async def test_async_selector_and_custom_order(engine: ExecutionEngine, participants: list[Executor]):
    order = iter(["Z", "Z", "X"])

    async def choose(
        context: ConversationContext, members: Sequence[Executor], state: TurnSelectorState
    ) -> NextSpeaker:
        return NextSpeaker(next(order))

    graph = WorkflowBuilder().build_group_chat(participants, FunctionTurnSelector(choose), max_iterations=3)

    result = await engine.run(graph, "topic")

    assert [turn.speaker_id for turn in result.get_final_context() or []] == ["Z", "Z", "X"]


async def test_unknown_participant_fails_run(engine: ExecutionEngine, participants: list[Executor]):
    graph = WorkflowBuilder().build_group_chat(
        participants, FunctionTurnSelector(lambda context, members, state: NextSpeaker("W"))
    )

    result = await engine.run(graph, "topic")

    failure = result.get_failure()
    assert failure is not None
    assert "unknown participant 'W'" in failure.details.message
    assert len(failure.context) == 0


async def test_selector_sees_state_and_snapshot(engine: ExecutionEngine, participants: list[Executor]):
    seen: list[tuple[int, int, bool]] = []
    inner = RoundRobinTurnSelector()

    def choose(context: ConversationContext, members: Sequence[Executor], state: TurnSelectorState):
        seen.append((state.iteration_count, len(context), context.is_frozen))
        return inner.select_next(context, members, state)

    graph = WorkflowBuilder().build_group_chat(participants, FunctionTurnSelector(choose), max_iterations=2)
    await engine.run(graph, "topic")

    assert seen == [(0, 0, True), (1, 1, True)]


async def test_rotation_continues_across_runs(engine: ExecutionEngine, participants: list[Executor]):
    graph = WorkflowBuilder().build_group_chat(participants, max_iterations=2)
    store = InMemoryContextStore()

    await engine.run(graph, "topic", store=store, conversation_id="panel")
    result = await engine.run(graph, "topic", store=store, conversation_id="panel")

    context = result.get_final_context()
    assert context is not None
    assert [turn.speaker_id for turn in context] == ["X", "Y", "Z", "X"]
    output = result.get_output_event()
    assert output is not None
    assert output.state["turn_selector"]["iteration_count"] == 2
    stored = store.get("panel")
    assert stored is not None
    assert stored.policy_state["turn_selector"] == {"iteration_count": 2, "max_iterations": 2, "last_speaker_id": "X"}


def test_round_robin_selection():
    members = [_participant("a"), _participant("b")]
    selector = RoundRobinTurnSelector()
    context = ConversationContext()
    assert selector.select_next(context, members, TurnSelectorState()) == NextSpeaker("a")
    assert selector.select_next(context, members, TurnSelectorState(last_speaker_id="a")) == NextSpeaker("b")
    assert selector.select_next(context, members, TurnSelectorState(last_speaker_id="b")) == NextSpeaker("a")
    assert selector.select_next(context, members, TurnSelectorState(last_speaker_id="gone")) == NextSpeaker("a")


def test_termination_phrase_selector_requires_phrases():
    with pytest.raises(ValueError):
        TerminationPhraseSelector([""])


def test_selector_state_round_trip():
    state = TurnSelectorState(iteration_count=2, max_iterations=6, last_speaker_id="Y")
    assert TurnSelectorState.model_validate(state.model_dump()) == state
    assert not state.exhausted
    assert TurnSelectorState(iteration_count=6, max_iterations=6).exhausted
