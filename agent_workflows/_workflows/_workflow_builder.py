# Copyright (c) Microsoft. All rights reserved.

import logging
from collections import deque
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace

from ..exceptions import DuplicateExecutorIdError, InvalidTopologyError
from ..observability import OtelAttr, capture_exception, create_workflow_span
from ._executor import Executor
from ._graph import HandoffEdge, TerminationPolicy, Topology, WorkflowGraph
from ._group_chat import RoundRobinTurnSelector, TurnSelector
from ._settings import WorkflowSettings

logger = logging.getLogger(__name__)

__all__ = ["WorkflowBuilder"]

EdgeLike = HandoffEdge | tuple[Executor | str, Executor | str]


class WorkflowBuilder:
    """Assembles validated, immutable workflow graphs.

    Each ``build_*`` method checks the structural rules of its topology and returns a
    `WorkflowGraph`, or raises `InvalidTopologyError` (`DuplicateExecutorIdError` for
    clashing ids). A partially built graph is never returned. Building has no side
    effects besides logging and tracing, so one builder can build any number of graphs.

    Args:
        settings: Defaults for ceilings and the routed fallback. Read from the
            environment when omitted.
        name: Optional name recorded on built graphs and their traces.

    Examples:
        .. code-block:: python

            from agent_workflows import ExecutionEngine, WorkflowBuilder

            builder = WorkflowBuilder(name="writer-pipeline")
            graph = builder.build_sequential([researcher, writer, editor])
            result = await ExecutionEngine().run(graph, "Write about tides")
            print(result.get_output())
    """

    def __init__(self, settings: WorkflowSettings | None = None, *, name: str | None = None) -> None:
        self._settings = settings or WorkflowSettings()
        self._name = name

    @property
    def settings(self) -> WorkflowSettings:
        return self._settings

    def _termination(self, **overrides: int | None) -> TerminationPolicy:
        values: dict[str, Any] = {
            "max_iterations": self._settings.max_iterations,
            "max_handoffs": self._settings.max_handoffs,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return TerminationPolicy(**values)

    @contextmanager
    def _build_span(self, topology: Topology) -> Iterator[trace.Span]:
        attributes: dict[str, str | int] = {OtelAttr.WORKFLOW_TOPOLOGY: topology.value}
        if self._name:
            attributes[OtelAttr.WORKFLOW_NAME] = self._name
        with create_workflow_span(OtelAttr.WORKFLOW_BUILD_SPAN, attributes) as span:
            span.add_event(OtelAttr.BUILD_STARTED)
            try:
                yield span
            except Exception as exc:
                span.add_event(
                    OtelAttr.BUILD_ERROR,
                    {OtelAttr.BUILD_ERROR_MESSAGE: str(exc), OtelAttr.BUILD_ERROR_TYPE: type(exc).__name__},
                )
                capture_exception(span, exc)
                raise
            span.add_event(OtelAttr.BUILD_COMPLETED)

    @staticmethod
    def _index(executors: Iterable[Any], topology: Topology) -> dict[str, Executor]:
        index: dict[str, Executor] = {}
        for executor in executors:
            if not isinstance(executor, Executor):
                raise InvalidTopologyError(
                    f"{topology.value} workflows accept Executor instances, got {type(executor).__name__}."
                )
            if executor.id in index:
                raise DuplicateExecutorIdError(executor.id)
            index[executor.id] = executor
        return index

    def build_sequential(self, executors: Sequence[Executor]) -> WorkflowGraph:
        """Build a pipeline that invokes ``executors`` in order, each on the previous output.

        Raises:
            InvalidTopologyError: No executors were supplied.
            DuplicateExecutorIdError: Two executors share an id.
        """
        with self._build_span(Topology.SEQUENTIAL) as span:
            if not executors:
                raise InvalidTopologyError("Sequential workflow requires at least one executor.")
            index = self._index(executors, Topology.SEQUENTIAL)
            span.add_event(OtelAttr.BUILD_VALIDATION_COMPLETED)
            graph = WorkflowGraph(
                topology=Topology.SEQUENTIAL,
                executors=index,
                termination=self._termination(),
                name=self._name,
            )
        logger.debug(f"Built sequential workflow with executors {list(index)}.")
        return graph

    def build_concurrent(self, executors: Sequence[Executor]) -> WorkflowGraph:
        """Build a fan-out/fan-in workflow sending the same input to every executor.

        Raises:
            InvalidTopologyError: No executors were supplied.
            DuplicateExecutorIdError: Two executors share an id.
        """
        with self._build_span(Topology.CONCURRENT) as span:
            if not executors:
                raise InvalidTopologyError("Concurrent workflow requires at least one executor.")
            index = self._index(executors, Topology.CONCURRENT)
            span.add_event(OtelAttr.BUILD_VALIDATION_COMPLETED)
            graph = WorkflowGraph(
                topology=Topology.CONCURRENT,
                executors=index,
                termination=self._termination(),
                name=self._name,
            )
        logger.debug(f"Built concurrent workflow with executors {list(index)}.")
        return graph

    def build_routed(
        self,
        triage: Executor,
        candidates: Sequence[Executor],
        *,
        fallback: Executor | str | None = None,
    ) -> WorkflowGraph:
        """Build a workflow where ``triage`` picks exactly one candidate to answer.

        Args:
            triage: Executor deciding which candidate handles the request.
            candidates: Executors that may be selected, in tie-break order.
            fallback: Candidate used when the triage decision names no candidate.
                Defaults to ``settings.fallback_candidate`` when it names a candidate, else the first candidate.

        Raises:
            InvalidTopologyError: No candidates, triage listed as a candidate, or a
                fallback that is not a candidate.
            DuplicateExecutorIdError: Two executors share an id.
        """
        with self._build_span(Topology.ROUTED) as span:
            if not isinstance(triage, Executor):
                raise InvalidTopologyError("Routed workflow requires a triage Executor.")
            if not candidates:
                raise InvalidTopologyError("Routed workflow requires at least one candidate.")
            candidate_index = self._index(candidates, Topology.ROUTED)
            if triage.id in candidate_index:
                raise InvalidTopologyError(f"Triage executor '{triage.id}' must not be one of the candidates.")

            fallback_id: str | None = fallback.id if isinstance(fallback, Executor) else fallback
            configured = self._settings.fallback_candidate
            if fallback_id is None and configured is not None:
                if configured in candidate_index:
                    fallback_id = configured
                else:
                    logger.warning(
                        f"Configured fallback candidate '{configured}' is not among the candidates "
                        f"{list(candidate_index)}; using the first candidate."
                    )
            if fallback_id is None:
                fallback_id = next(iter(candidate_index))
            if fallback_id not in candidate_index:
                raise InvalidTopologyError(
                    f"Fallback '{fallback_id}' is not a candidate. Candidates: {list(candidate_index)}"
                )
            span.add_event(OtelAttr.BUILD_VALIDATION_COMPLETED)

            graph = WorkflowGraph(
                topology=Topology.ROUTED,
                executors={triage.id: triage, **candidate_index},
                termination=self._termination(),
                name=self._name,
                triage_id=triage.id,
                candidate_ids=tuple(candidate_index),
                fallback_id=fallback_id,
            )
        logger.debug(f"Built routed workflow: triage '{triage.id}', candidates {list(candidate_index)}.")
        return graph

    def build_handoff(
        self,
        initial: Executor,
        edges: Iterable[EdgeLike],
        *,
        executors: Sequence[Executor] | None = None,
        max_handoffs: int | None = None,
        return_to_previous: bool = False,
    ) -> WorkflowGraph:
        """Build a workflow where the active executor decides who takes over next.

        Args:
            initial: Executor holding the floor when a run starts.
            edges: Declared transfers, as `HandoffEdge` objects or ``(source, target)``
                pairs of executors or executor ids.
            executors: Additional participants referenced by id in ``edges``.
            max_handoffs: Ceiling on transfers per run. Defaults to ``settings.max_handoffs``.
            return_to_previous: Start the next run of the same conversation with the
                executor that was active when the previous run ended.

        Raises:
            InvalidTopologyError: An edge references an unknown executor, an edge points
                back to its own source, or ``max_handoffs`` is negative.
            DuplicateExecutorIdError: Two different executors share an id.

        Examples:
            .. code-block:: python

                graph = WorkflowBuilder().build_handoff(
                    triage,
                    [(triage, math_tutor), (triage, history_tutor)],
                )
        """
        with self._build_span(Topology.HANDOFF) as span:
            if not isinstance(initial, Executor):
                raise InvalidTopologyError("Handoff workflow requires an initial Executor.")
            edge_items = list(edges)

            participants: dict[str, Executor] = {}

            def register(executor: Executor) -> None:
                existing = participants.get(executor.id)
                if existing is None:
                    participants[executor.id] = executor
                elif existing is not executor:
                    raise DuplicateExecutorIdError(executor.id)

            register(initial)
            for executor in executors or ():
                if not isinstance(executor, Executor):
                    raise InvalidTopologyError(
                        f"Handoff participants must be Executor instances, got {type(executor).__name__}."
                    )
                register(executor)
            for item in edge_items:
                if isinstance(item, HandoffEdge) or not isinstance(item, tuple):
                    continue
                for endpoint in item:
                    if isinstance(endpoint, Executor):
                        register(endpoint)

            declared: list[HandoffEdge] = []
            seen: set[tuple[str, str]] = set()

            def declare(source_id: str, target_id: str, description: str | None = None) -> None:
                for endpoint in (source_id, target_id):
                    if endpoint not in participants:
                        raise InvalidTopologyError(
                            f"Handoff edge '{source_id}' -> '{target_id}' references unknown executor "
                            f"'{endpoint}'. Participants: {list(participants)}"
                        )
                if source_id == target_id:
                    raise InvalidTopologyError(f"Executor '{source_id}' cannot hand off to itself.")
                if (source_id, target_id) in seen:
                    return
                seen.add((source_id, target_id))
                declared.append(
                    HandoffEdge(source_id, target_id, description or participants[target_id].description or None)
                )

            for item in edge_items:
                if isinstance(item, HandoffEdge):
                    declare(item.source_id, item.target_id, item.description)
                    continue
                try:
                    source, target = item
                except (TypeError, ValueError):
                    raise InvalidTopologyError(
                        f"Handoff edges must be HandoffEdge objects or (source, target) pairs, got {item!r}."
                    ) from None
                declare(
                    source.id if isinstance(source, Executor) else source,
                    target.id if isinstance(target, Executor) else target,
                )
            for executor in list(participants.values()):
                for target_id in executor.handoff_targets:
                    declare(executor.id, target_id)

            limit = max_handoffs if max_handoffs is not None else self._settings.max_handoffs
            if limit < 0:
                raise InvalidTopologyError("max_handoffs must not be negative.")

            for executor_id in self._unreachable(initial.id, participants, declared):
                logger.warning(f"Executor '{executor_id}' is not reachable from '{initial.id}' by any handoff.")
            span.add_event(OtelAttr.BUILD_VALIDATION_COMPLETED)

            graph = WorkflowGraph(
                topology=Topology.HANDOFF,
                executors=participants,
                edges=tuple(declared),
                termination=self._termination(max_handoffs=limit),
                name=self._name,
                initial_executor_id=initial.id,
                return_to_previous=return_to_previous,
            )
        logger.debug(
            f"Built handoff workflow starting at '{initial.id}' with {len(declared)} edges "
            f"across {len(participants)} executors."
        )
        return graph

    @staticmethod
    def _unreachable(start_id: str, participants: dict[str, Executor], edges: Sequence[HandoffEdge]) -> list[str]:
        reached = {start_id}
        queue = deque([start_id])
        while queue:
            current = queue.popleft()
            for edge in edges:
                if edge.source_id == current and edge.target_id not in reached:
                    reached.add(edge.target_id)
                    queue.append(edge.target_id)
        return [executor_id for executor_id in participants if executor_id not in reached]

    def build_group_chat(
        self,
        participants: Sequence[Executor],
        selector: TurnSelector | None = None,
        *,
        max_iterations: int | None = None,
    ) -> WorkflowGraph:
        """Build a turn-based conversation among ``participants``.

        Args:
            participants: Executors taking turns, in declaration order.
            selector: Policy picking the next speaker. Defaults to `RoundRobinTurnSelector`.
            max_iterations: Ceiling on turns per run. Defaults to ``settings.max_iterations``.

        Raises:
            InvalidTopologyError: Fewer than two participants, a non-positive
                ``max_iterations``, or a selector without ``select_next``.
            DuplicateExecutorIdError: Two participants share an id.
        """
        with self._build_span(Topology.GROUP_CHAT) as span:
            if len(participants) < 2:
                raise InvalidTopologyError("Group chat workflow requires at least two participants.")
            index = self._index(participants, Topology.GROUP_CHAT)
            if max_iterations is not None and max_iterations < 1:
                raise InvalidTopologyError("max_iterations must be at least 1.")
            if selector is not None and not callable(getattr(selector, "select_next", None)):
                raise InvalidTopologyError(f"{type(selector).__name__} does not implement select_next().")
            span.add_event(OtelAttr.BUILD_VALIDATION_COMPLETED)
            graph = WorkflowGraph(
                topology=Topology.GROUP_CHAT,
                executors=index,
                termination=self._termination(max_iterations=max_iterations),
                name=self._name,
                selector=selector or RoundRobinTurnSelector(),
            )
        logger.debug(f"Built group chat workflow with participants {list(index)}.")
        return graph
