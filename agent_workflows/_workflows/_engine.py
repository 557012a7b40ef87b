# Copyright (c) Microsoft. All rights reserved.

import asyncio
import inspect
import logging
import time
from collections.abc import AsyncIterable, Callable, Coroutine
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from opentelemetry import trace

from .._types import ConversationContext, Role
from ..exceptions import ExceededHandoffLimitError, ResponderError, WorkflowCancelledError, WorkflowException
from ..observability import OtelAttr, capture_exception, create_workflow_span
from ._context_store import ContextStore
from ._events import (
    AgentRunUpdateEvent,
    ExecutorCompletedEvent,
    ExecutorFailedEvent,
    ExecutorStartedEvent,
    HandoffRequestedEvent,
    RoutingDecisionEvent,
    WorkflowErrorDetails,
    WorkflowEvent,
    WorkflowFailedEvent,
    WorkflowOutputEvent,
    WorkflowStartedEvent,
)
from ._executor import Executor
from ._graph import Topology, WorkflowGraph
from ._group_chat import NextSpeaker, RoundRobinTurnSelector, Terminate, TurnSelectorState
from ._handoff import HandoffRegistry
from ._routing import render_triage_prompt, resolve_route
from ._settings import WorkflowSettings

logger = logging.getLogger(__name__)

__all__ = ["ExecutionEngine", "WorkflowRunResult"]

ACTIVE_EXECUTOR_KEY = "active_executor_id"
TURN_SELECTOR_KEY = "turn_selector"
USER_SPEAKER_ID = "user"


class WorkflowRunResult(list[WorkflowEvent]):
    """Every event of a finished run, in emission order.

    The last event is always the terminal `WorkflowOutputEvent` or `WorkflowFailedEvent`.
    """

    def get_output_event(self) -> WorkflowOutputEvent | None:
        return next((event for event in reversed(self) if isinstance(event, WorkflowOutputEvent)), None)

    def get_failure(self) -> WorkflowFailedEvent | None:
        """Return the terminal failure event, or None if the run completed."""
        return next((event for event in reversed(self) if isinstance(event, WorkflowFailedEvent)), None)

    def get_output(self) -> str | None:
        """Return the text of the last agent turn of a completed run."""
        output_event = self.get_output_event()
        return output_event.output if output_event is not None else None

    def get_final_context(self) -> ConversationContext | None:
        """Return the frozen conversation, whether the run completed or failed."""
        for event in reversed(self):
            if isinstance(event, (WorkflowOutputEvent, WorkflowFailedEvent)):
                return event.context
        return None

    def get_executor_outputs(self) -> list[tuple[str, str]]:
        """Return ``(executor_id, output)`` pairs in turn-append order."""
        return [(event.executor_id, event.output) for event in self if isinstance(event, ExecutorCompletedEvent)]


@dataclass
class _RunState:
    """Mutable bookkeeping of one run. Never shared between runs."""

    graph: WorkflowGraph
    context: ConversationContext
    queue: "asyncio.Queue[WorkflowEvent | None]"
    cancellation: asyncio.Event | None
    policy_state: dict[str, Any] = field(default_factory=dict)
    failures: dict[str, BaseException] = field(default_factory=dict)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def cancel_requested(self) -> bool:
        return self.cancellation is not None and self.cancellation.is_set()

    def emit(self, event: WorkflowEvent) -> None:
        self.queue.put_nowait(event)


class ExecutionEngine:
    """Runs workflow graphs and streams their events.

    The engine owns the conversation for the duration of a run: it invokes executors
    according to the graph's topology, appends one turn per completed step and ends
    every run with exactly one `WorkflowOutputEvent` or `WorkflowFailedEvent`. One
    engine can drive any number of concurrent runs.

    Args:
        settings: Cancellation timeout and input recording. Read from the environment
            when omitted.

    Examples:
        .. code-block:: python

            engine = ExecutionEngine()
            async for event in engine.run_stream(graph, "What is 2 + 2?"):
                if isinstance(event, AgentRunUpdateEvent):
                    print(event.text_delta, end="")
                elif isinstance(event, WorkflowOutputEvent):
                    print(event.output)
    """

    def __init__(self, settings: WorkflowSettings | None = None) -> None:
        self._settings = settings or WorkflowSettings()
        self._handlers: dict[Topology, Callable[[_RunState, str], Coroutine[Any, Any, None]]] = {
            Topology.SEQUENTIAL: self._run_sequential,
            Topology.CONCURRENT: self._run_concurrent,
            Topology.ROUTED: self._run_routed,
            Topology.HANDOFF: self._run_handoff,
            Topology.GROUP_CHAT: self._run_group_chat,
        }

    @property
    def settings(self) -> WorkflowSettings:
        return self._settings

    async def run(
        self,
        graph: WorkflowGraph,
        initial_input: str,
        initial_context: ConversationContext | None = None,
        *,
        cancellation: asyncio.Event | None = None,
        store: ContextStore | None = None,
        conversation_id: str | None = None,
    ) -> WorkflowRunResult:
        """Run a workflow to completion and collect its events.

        See `run_stream` for the parameters.
        """
        events = WorkflowRunResult()
        async for event in self.run_stream(
            graph,
            initial_input,
            initial_context,
            cancellation=cancellation,
            store=store,
            conversation_id=conversation_id,
        ):
            events.append(event)
        return events

    async def run_stream(
        self,
        graph: WorkflowGraph,
        initial_input: str,
        initial_context: ConversationContext | None = None,
        *,
        cancellation: asyncio.Event | None = None,
        store: ContextStore | None = None,
        conversation_id: str | None = None,
    ) -> AsyncIterable[WorkflowEvent]:
        """Run a workflow and yield its events as they happen.

        Args:
            graph: A graph produced by `WorkflowBuilder`.
            initial_input: The request the workflow answers.
            initial_context: Prior conversation to continue. It is copied, never mutated.
            cancellation: Event that cancels the run when set. Every in-flight responder
                call is cancelled and no new call is started.
            store: Context store to load the conversation from and save it back to.
            conversation_id: Key of the conversation in ``store``.

        Yields:
            Workflow events, ending with one `WorkflowOutputEvent` or `WorkflowFailedEvent`.

        Raises:
            ValueError: ``store`` and ``conversation_id`` were not supplied together.
        """
        if (store is None) != (conversation_id is None):
            raise ValueError("store and conversation_id must be supplied together.")

        policy_state: dict[str, Any] = {}
        context = ConversationContext(initial_context.turns) if initial_context is not None else None
        if store is not None and conversation_id is not None:
            stored = store.get_or_create(conversation_id)
            policy_state = dict(stored.policy_state)
            if context is None:
                context = ConversationContext(stored.context.turns)
            logger.debug(f"Loaded conversation '{conversation_id}' with {len(stored.context)} turns.")

        run = _RunState(
            graph=graph,
            context=context or ConversationContext(),
            queue=asyncio.Queue(),
            cancellation=cancellation,
            policy_state=policy_state,
        )
        driver = asyncio.create_task(self._drive(run, initial_input, store, conversation_id))
        try:
            while True:
                event = await run.queue.get()
                if event is None:
                    break
                yield event
            await driver
        finally:
            if not driver.done():
                driver.cancel()
                await asyncio.wait({driver})

    async def _drive(
        self,
        run: _RunState,
        initial_input: str,
        store: ContextStore | None,
        conversation_id: str | None,
    ) -> None:
        graph = run.graph
        attributes: dict[str, str | int] = {OtelAttr.WORKFLOW_TOPOLOGY: graph.topology.value}
        if graph.name:
            attributes[OtelAttr.WORKFLOW_NAME] = graph.name
        if conversation_id:
            attributes[OtelAttr.WORKFLOW_CONVERSATION_ID] = conversation_id
        try:
            with create_workflow_span(OtelAttr.WORKFLOW_RUN_SPAN, attributes) as span:
                span.add_event(OtelAttr.WORKFLOW_STARTED)
                run.emit(WorkflowStartedEvent(graph.topology.value))
                logger.debug(f"Starting {graph.topology.value} workflow run.")
                terminal: WorkflowEvent
                try:
                    if self._settings.record_input:
                        run.context.add_turn(USER_SPEAKER_ID, Role.USER, initial_input)
                    await self._handlers[graph.topology](run, initial_input)
                except Exception as exc:
                    if not isinstance(exc, WorkflowException):
                        logger.exception(f"Unexpected error in {graph.topology.value} workflow run.")
                    span.add_event(
                        OtelAttr.WORKFLOW_ERROR,
                        {OtelAttr.ERROR_TYPE: type(exc).__name__, OtelAttr.ERROR_MESSAGE: str(exc)},
                    )
                    capture_exception(span, exc)
                    run.context.freeze()
                    terminal = WorkflowFailedEvent(
                        WorkflowErrorDetails.from_exception(exc, executor_id=self._failed_executor(run, exc)),
                        run.context,
                        error=exc,
                        state=run.policy_state,
                    )
                else:
                    run.context.freeze()
                    agent_turns = run.context.agent_turns()
                    last = agent_turns[-1] if agent_turns else None
                    terminal = WorkflowOutputEvent(
                        run.context,
                        output=last.text if last is not None else None,
                        failures=run.failures,
                        state=run.policy_state,
                    )
                    span.add_event(OtelAttr.WORKFLOW_COMPLETED)
                span.set_attribute(OtelAttr.WORKFLOW_TURN_COUNT, len(run.context))
                if store is not None and conversation_id is not None:
                    store.save(conversation_id, run.context, run.policy_state)
                    logger.debug(f"Saved conversation '{conversation_id}' with {len(run.context)} turns.")
                run.emit(terminal)
        finally:
            run.queue.put_nowait(None)

    @staticmethod
    def _failed_executor(run: _RunState, exc: BaseException) -> str | None:
        if isinstance(exc, ResponderError):
            return exc.executor_id
        if isinstance(exc, ExceededHandoffLimitError):
            active = run.policy_state.get(ACTIVE_EXECUTOR_KEY)
            return active if isinstance(active, str) else None
        return None

    async def _invoke(self, run: _RunState, executor: Executor, prompt: str, context: ConversationContext) -> str:
        """Call the executor's responder, racing it against the cancellation signal."""

        async def forward(delta: str) -> None:
            run.emit(AgentRunUpdateEvent(executor.id, delta))

        call = asyncio.create_task(
            executor.invoke(prompt, context, on_update=forward, topology=run.graph.topology.value)
        )
        if run.cancellation is None:
            return await call

        waiter = asyncio.create_task(run.cancellation.wait())
        try:
            done, _ = await asyncio.wait({call, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not call.done():
                call.cancel()
        if call in done:
            return call.result()

        logger.info(f"Cancellation requested while executor '{executor.id}' was running.")
        _, pending = await asyncio.wait({call}, timeout=self._settings.cancellation_timeout)
        if pending:
            logger.warning(
                f"Executor '{executor.id}' did not stop within {self._settings.cancellation_timeout} seconds "
                "of cancellation."
            )
        raise WorkflowCancelledError(f"Workflow cancelled while executor '{executor.id}' was running.")

    async def _step(
        self,
        run: _RunState,
        executor: Executor,
        prompt: str,
        *,
        snapshot: ConversationContext | None = None,
    ) -> str:
        """Invoke one executor and append its output as a turn."""
        if run.cancel_requested:
            raise WorkflowCancelledError(f"Workflow cancelled before executor '{executor.id}' started.")
        view = snapshot if snapshot is not None else run.context.snapshot()
        run.emit(ExecutorStartedEvent(executor.id))
        started = time.perf_counter()
        try:
            output = await self._invoke(run, executor, prompt, view)
        except ResponderError as exc:
            run.emit(ExecutorFailedEvent(executor.id, exc))
            raise
        if run.cancel_requested:
            raise WorkflowCancelledError(
                f"Workflow cancelled as executor '{executor.id}' completed; its output is dropped."
            )
        async with run.lock:
            run.context.add_turn(executor.id, Role.AGENT, output)
        run.emit(ExecutorCompletedEvent(executor.id, output, timedelta(seconds=time.perf_counter() - started)))
        return output

    async def _run_sequential(self, run: _RunState, initial_input: str) -> None:
        current = initial_input
        for executor in run.graph.executors.values():
            current = await self._step(run, executor, current)

    async def _run_concurrent(self, run: _RunState, initial_input: str) -> None:
        snapshot = run.context.snapshot()

        async def branch(executor: Executor) -> None:
            try:
                await self._step(run, executor, initial_input, snapshot=snapshot)
            except ResponderError as exc:
                logger.warning(f"Concurrent branch '{executor.id}' failed: {exc}")
                run.failures[executor.id] = exc

        tasks = [asyncio.create_task(branch(executor)) for executor in run.graph.executors.values()]
        try:
            results = await asyncio.gather(*tasks, return_exceptions=True)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
        errors = [result for result in results if isinstance(result, BaseException)]
        for error in errors:
            if isinstance(error, WorkflowCancelledError):
                raise error
        if errors:
            raise errors[0]

    async def _run_routed(self, run: _RunState, initial_input: str) -> None:
        graph = run.graph
        if graph.triage_id is None or graph.fallback_id is None:
            raise WorkflowException("Routed graph is missing its triage or fallback executor.")
        triage = graph.get_executor(graph.triage_id)
        candidates = [graph.get_executor(candidate_id) for candidate_id in graph.candidate_ids]
        decision_text = await self._step(run, triage, render_triage_prompt(initial_input, candidates))
        decision = resolve_route(decision_text, candidates, graph.fallback_id)
        run.emit(RoutingDecisionEvent(decision))
        trace.get_current_span().add_event(
            OtelAttr.WORKFLOW_ROUTING_DECISION,
            {OtelAttr.ROUTING_OUTCOME: decision.outcome.value, OtelAttr.EXECUTOR_ID: decision.selected_id},
        )
        logger.info(f"Routing request to '{decision.selected_id}' ({decision.outcome}).")
        await self._step(run, graph.get_executor(decision.selected_id), initial_input)

    @staticmethod
    def _handoff_prompt(
        initial_input: str,
        registry: HandoffRegistry,
        active_id: str,
        source_id: str | None,
        reason: str | None,
    ) -> str:
        parts = [initial_input]
        if source_id is not None:
            parts.append(f"Transferred from '{source_id}'" + (f": {reason}" if reason else "."))
        instructions = registry.render_instructions(active_id)
        if instructions:
            parts.append(instructions)
        return "\n\n".join(parts)

    async def _run_handoff(self, run: _RunState, initial_input: str) -> None:
        graph = run.graph
        if graph.initial_executor_id is None:
            raise WorkflowException("Handoff graph is missing its initial executor.")
        registry = HandoffRegistry(graph.edges)
        max_handoffs = graph.termination.max_handoffs

        active_id = graph.initial_executor_id
        previous = run.policy_state.get(ACTIVE_EXECUTOR_KEY)
        if graph.return_to_previous and isinstance(previous, str) and previous in graph.executors:
            logger.info(f"Returning to previously active executor '{previous}'.")
            active_id = previous

        handoffs = 0
        source_id: str | None = None
        reason: str | None = None
        while True:
            run.policy_state[ACTIVE_EXECUTOR_KEY] = active_id
            prompt = self._handoff_prompt(initial_input, registry, active_id, source_id, reason)
            output = await self._step(run, graph.get_executor(active_id), prompt)
            resolution = registry.resolve(active_id, output)
            if resolution is None or not resolution.declared:
                break
            if handoffs >= max_handoffs:
                raise ExceededHandoffLimitError(max_handoffs)
            handoffs += 1
            run.emit(HandoffRequestedEvent(active_id, resolution.target_id, resolution.reason))
            trace.get_current_span().add_event(
                OtelAttr.WORKFLOW_HANDOFF,
                {OtelAttr.HANDOFF_SOURCE_ID: active_id, OtelAttr.HANDOFF_TARGET_ID: resolution.target_id},
            )
            logger.info(f"Handoff detected: {active_id} -> {resolution.target_id}.")
            source_id, reason, active_id = active_id, resolution.reason, resolution.target_id

    async def _run_group_chat(self, run: _RunState, initial_input: str) -> None:
        graph = run.graph
        participants = list(graph.executors.values())
        selector = graph.selector or RoundRobinTurnSelector()
        restored = run.policy_state.get(TURN_SELECTOR_KEY) or {}
        state = TurnSelectorState(
            max_iterations=graph.termination.max_iterations,
            last_speaker_id=restored.get("last_speaker_id"),
        )
        run.policy_state[TURN_SELECTOR_KEY] = state.model_dump()

        while not state.exhausted:
            if run.cancel_requested:
                raise WorkflowCancelledError("Workflow cancelled before the next speaker was selected.")
            selection = selector.select_next(run.context.snapshot(), participants, state.model_copy())
            if inspect.isawaitable(selection):
                selection = await selection
            if isinstance(selection, Terminate):
                if state.iteration_count > 0:
                    logger.info(f"Group chat terminated after {state.iteration_count} turns: {selection.reason}")
                    break
                logger.debug("Ignoring termination before the first turn; the first participant speaks.")
                selection = NextSpeaker(participants[0].id)
            if not isinstance(selection, NextSpeaker):
                raise WorkflowException(f"Turn selector returned {selection!r}; expected NextSpeaker or Terminate.")
            if selection.executor_id not in graph.executors:
                raise WorkflowException(
                    f"Turn selector chose unknown participant '{selection.executor_id}'. "
                    f"Participants: {list(graph.executors)}"
                )
            await self._step(run, graph.get_executor(selection.executor_id), initial_input)
            state.iteration_count += 1
            state.last_speaker_id = selection.executor_id
            run.policy_state[TURN_SELECTOR_KEY] = state.model_dump()
