# Copyright (c) Microsoft. All rights reserved.

import logging

import pytest

from agent_workflows import (
    ConversationContext,
    ExecutionEngine,
    Executor,
    ExecutorFailedEvent,
    FunctionResponder,
    RoutingDecisionEvent,
    RoutingOutcome,
    WorkflowBuilder,
    WorkflowSettings,
    render_triage_prompt,
    resolve_route,
)


class _Specialist:
    def __init__(self, name: str) -> None:
        self.name = name
        self.prompts: list[str] = []

    async def respond(self, prompt: str, context: ConversationContext) -> str:
        self.prompts.append(prompt)
        return f"{self.name} handled it"


def _triage(decision: str) -> Executor:
    return Executor("triage", FunctionResponder(lambda prompt, context: decision))


@pytest.fixture
def team() -> dict[str, _Specialist]:
    return {name: _Specialist(name) for name in ("architect", "developer", "reviewer")}


@pytest.fixture
def candidates(team: dict[str, _Specialist]) -> list[Executor]:
    return [
        Executor("architect", team["architect"], description="Designs systems", label="Architect"),
        Executor("developer", team["developer"], description="Writes code", label="Developer"),
        Executor("reviewer", team["reviewer"], description="Reviews code", label="Reviewer"),
    ]


@pytest.fixture
def engine() -> ExecutionEngine:
    return ExecutionEngine(WorkflowSettings(record_input=False))


async def test_triage_selects_named_candidate(
    engine: ExecutionEngine, team: dict[str, _Specialist], candidates: list[Executor]
):
    graph = WorkflowBuilder().build_routed(_triage("DEVELOPER: because this needs code"), candidates)

    result = await engine.run(graph, "Implement the login form")

    decisions = [event.decision for event in result if isinstance(event, RoutingDecisionEvent)]
    assert len(decisions) == 1
    assert decisions[0].selected_id == "developer"
    assert decisions[0].outcome is RoutingOutcome.MATCHED
    assert team["developer"].prompts == ["Implement the login form"]
    assert team["architect"].prompts == [] and team["reviewer"].prompts == []
    context = result.get_final_context()
    assert context is not None
    assert [turn.speaker_id for turn in context] == ["triage", "developer"]
    assert result.get_output() == "developer handled it"


async def test_unmatched_decision_uses_fallback(
    engine: ExecutionEngine,
    team: dict[str, _Specialist],
    candidates: list[Executor],
    caplog: pytest.LogCaptureFixture,
):
    graph = WorkflowBuilder().build_routed(_triage("I don't know"), candidates, fallback="reviewer")

    with caplog.at_level(logging.WARNING):
        result = await engine.run(graph, "Something vague")

    assert result.get_failure() is None
    decision = next(event.decision for event in result if isinstance(event, RoutingDecisionEvent))
    assert decision.selected_id == "reviewer"
    assert decision.is_fallback
    assert decision.matched_ids == ()
    assert team["reviewer"].prompts == ["Something vague"]
    assert "fallback" in caplog.text


async def test_ambiguous_decision_takes_first_in_declaration_order(
    engine: ExecutionEngine, team: dict[str, _Specialist], candidates: list[Executor]
):
    graph = WorkflowBuilder().build_routed(_triage("Reviewer or maybe the architect"), candidates)

    result = await engine.run(graph, "Check the design")

    decision = next(event.decision for event in result if isinstance(event, RoutingDecisionEvent))
    assert decision.outcome is RoutingOutcome.AMBIGUOUS
    assert decision.matched_ids == ("architect", "reviewer")
    assert decision.selected_id == "architect"
    assert team["architect"].prompts == ["Check the design"]


async def test_triage_receives_candidate_listing(engine: ExecutionEngine, candidates: list[Executor]):
    prompts: list[str] = []

    def triage(prompt: str, context: ConversationContext) -> str:
        prompts.append(prompt)
        return "architect | big picture"

    graph = WorkflowBuilder().build_routed(Executor("triage", FunctionResponder(triage)), candidates)
    await engine.run(graph, "Plan the migration")

    assert len(prompts) == 1
    assert "REQUEST: Plan the migration" in prompts[0]
    assert "- ARCHITECT: Designs systems" in prompts[0]
    assert "MEMBER_NAME | Reason" in prompts[0]


async def test_triage_failure_fails_run(engine: ExecutionEngine, candidates: list[Executor]):
    def broken(prompt: str, context: ConversationContext) -> str:
        raise RuntimeError("no model")

    graph = WorkflowBuilder().build_routed(Executor("triage", FunctionResponder(broken)), candidates)

    result = await engine.run(graph, "anything")

    failure = result.get_failure()
    assert failure is not None
    assert failure.executor_id == "triage"
    assert [event.executor_id for event in result if isinstance(event, ExecutorFailedEvent)] == ["triage"]
    assert not any(isinstance(event, RoutingDecisionEvent) for event in result)


def test_resolve_route_matches_label(candidates: list[Executor]):
    decision = resolve_route("The DEVELOPER should do it", candidates, "architect")
    assert decision.selected_id == "developer"
    assert decision.outcome is RoutingOutcome.MATCHED


def test_resolve_route_empty_text_falls_back(candidates: list[Executor]):
    decision = resolve_route("", candidates, "architect")
    assert decision.outcome is RoutingOutcome.FALLBACK
    assert decision.selected_id == "architect"


def test_render_triage_prompt_without_description():
    plain = Executor("qa", FunctionResponder(lambda prompt, context: ""))
    prompt = render_triage_prompt("test it", [plain])
    assert "- QA\n" in prompt
