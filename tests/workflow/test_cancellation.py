# Copyright (c) Microsoft. All rights reserved.

import asyncio
import logging

import pytest

from agent_workflows import (
    ConversationContext,
    ExecutionEngine,
    Executor,
    ExecutorCompletedEvent,
    FunctionResponder,
    WorkflowBuilder,
    WorkflowCancelledError,
    WorkflowFailedEvent,
    WorkflowSettings,
)


class _BlockingResponder:
    """Blocks until cancelled and records that the cancellation reached it."""

    def __init__(self) -> None:
        self.started = asyncio.Event()
        self.cancelled = False

    async def respond(self, prompt: str, context: ConversationContext) -> str:
        self.started.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return "never"


@pytest.fixture
def engine() -> ExecutionEngine:
    return ExecutionEngine(WorkflowSettings(cancellation_timeout=1.0, record_input=False))


async def test_cancel_mid_concurrent_run_keeps_completed_turn(engine: ExecutionEngine):
    b = _BlockingResponder()
    c = _BlockingResponder()
    graph = WorkflowBuilder().build_concurrent([
        Executor("A", FunctionResponder(lambda prompt, context: "a")),
        Executor("B", b),
        Executor("C", c),
    ])
    cancel = asyncio.Event()

    events = []
    async for event in engine.run_stream(graph, "q", cancellation=cancel):
        events.append(event)
        if isinstance(event, ExecutorCompletedEvent) and event.executor_id == "A":
            await asyncio.wait_for(asyncio.gather(b.started.wait(), c.started.wait()), timeout=1)
            cancel.set()

    failure = events[-1]
    assert isinstance(failure, WorkflowFailedEvent)
    assert isinstance(failure.error, WorkflowCancelledError)
    assert failure.details.error_type == "WorkflowCancelledError"
    assert [turn.speaker_id for turn in failure.context] == ["A"]
    assert failure.context.is_frozen
    assert b.cancelled and c.cancelled
    completed = [event.executor_id for event in events if isinstance(event, ExecutorCompletedEvent)]
    assert completed == ["A"]


async def test_no_new_call_after_cancellation_and_racing_output_dropped(engine: ExecutionEngine):
    cancel = asyncio.Event()
    calls: list[str] = []

    def first(prompt: str, context: ConversationContext) -> str:
        calls.append("A")
        cancel.set()
        return "a"

    def second(prompt: str, context: ConversationContext) -> str:
        calls.append("B")
        return "b"

    graph = WorkflowBuilder().build_sequential([
        Executor("A", FunctionResponder(first)),
        Executor("B", FunctionResponder(second)),
    ])

    result = await engine.run(graph, "x", cancellation=cancel)

    assert calls == ["A"]
    failure = result.get_failure()
    assert failure is not None
    assert isinstance(failure.error, WorkflowCancelledError)
    assert len(failure.context) == 0


async def test_cancel_in_flight_sequential_call(engine: ExecutionEngine):
    blocking = _BlockingResponder()
    graph = WorkflowBuilder().build_sequential([Executor("slow", blocking)])
    cancel = asyncio.Event()

    async def trigger() -> None:
        await blocking.started.wait()
        cancel.set()

    trigger_task = asyncio.create_task(trigger())
    result = await engine.run(graph, "x", cancellation=cancel)
    await trigger_task

    failure = result.get_failure()
    assert failure is not None
    assert isinstance(failure.error, WorkflowCancelledError)
    assert "slow" in failure.details.message
    assert blocking.cancelled
    assert len(failure.context) == 0


async def test_already_set_cancellation_starts_nothing(engine: ExecutionEngine):
    calls: list[str] = []

    def record(prompt: str, context: ConversationContext) -> str:
        calls.append(prompt)
        return prompt

    graph = WorkflowBuilder().build_concurrent([Executor("A", FunctionResponder(record))])
    cancel = asyncio.Event()
    cancel.set()

    result = await engine.run(graph, "x", cancellation=cancel)

    assert calls == []
    failure = result.get_failure()
    assert failure is not None
    assert isinstance(failure.error, WorkflowCancelledError)


async def test_stubborn_responder_bounded_by_timeout(caplog: pytest.LogCaptureFixture):
    engine = ExecutionEngine(WorkflowSettings(cancellation_timeout=0.05))
    started = asyncio.Event()

    async def stubborn(prompt: str, context: ConversationContext) -> str:
        started.set()
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            await asyncio.sleep(0.2)
            return "late"
        return "never"

    graph = WorkflowBuilder().build_sequential([Executor("stubborn", FunctionResponder(stubborn))])
    cancel = asyncio.Event()

    async def trigger() -> None:
        await started.wait()
        cancel.set()

    trigger_task = asyncio.create_task(trigger())
    with caplog.at_level(logging.WARNING):
        result = await asyncio.wait_for(engine.run(graph, "x", cancellation=cancel), timeout=1)
    await trigger_task

    failure = result.get_failure()
    assert failure is not None
    assert isinstance(failure.error, WorkflowCancelledError)
    assert len(failure.context) == 0
    assert "did not stop within" in caplog.text
    # let the stubborn call finish before the loop closes
    await asyncio.sleep(0.3)


async def test_closing_stream_cancels_in_flight_call(engine: ExecutionEngine):
    blocking = _BlockingResponder()
    graph = WorkflowBuilder().build_sequential([Executor("slow", blocking)])

    stream = engine.run_stream(graph, "x")
    async for _ in stream:
        await asyncio.wait_for(blocking.started.wait(), timeout=1)
        break
    await stream.aclose()  # type: ignore[attr-defined]

    assert blocking.cancelled


async def test_branch_finishing_with_the_signal_does_not_append(engine: ExecutionEngine):
    cancel = asyncio.Event()
    blocking = _BlockingResponder()

    def racer(prompt: str, context: ConversationContext) -> str:
        cancel.set()
        return "raced"

    graph = WorkflowBuilder().build_concurrent([
        Executor("racer", FunctionResponder(racer)),
        Executor("slow", blocking),
    ])

    result = await engine.run(graph, "q", cancellation=cancel)

    failure = result.get_failure()
    assert failure is not None
    assert isinstance(failure.error, WorkflowCancelledError)
    assert len(failure.context) == 0
    assert not any(isinstance(event, ExecutorCompletedEvent) for event in result)
