# Copyright (c) Microsoft. All rights reserved.

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from ._executor import Executor

if TYPE_CHECKING:
    from ._group_chat import TurnSelector

__all__ = ["HandoffEdge", "TerminationPolicy", "Topology", "WorkflowGraph"]

DEFAULT_MAX_ITERATIONS = 10
DEFAULT_MAX_HANDOFFS = 25


class Topology(str, Enum):
    """Structural pattern governing how executors are invoked and composed."""

    SEQUENTIAL = "sequential"
    CONCURRENT = "concurrent"
    ROUTED = "routed"
    HANDOFF = "handoff"
    GROUP_CHAT = "group_chat"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class HandoffEdge:
    """A declared permission for ``source_id`` to transfer control to ``target_id``.

    Attributes:
        source_id: Executor that may hand off.
        target_id: Executor that may receive control.
        description: Optional text describing when to use this transfer. Defaults to the
            target executor's description when the graph is built.
    """

    source_id: str
    target_id: str
    description: str | None = None


@dataclass(frozen=True)
class TerminationPolicy:
    """Ceilings applied by the engine to loops.

    Attributes:
        max_iterations: Maximum number of group chat turns per run.
        max_handoffs: Maximum number of transfers in one handoff run.
    """

    max_iterations: int = DEFAULT_MAX_ITERATIONS
    max_handoffs: int = DEFAULT_MAX_HANDOFFS


@dataclass(frozen=True)
class WorkflowGraph:
    """Immutable description of a workflow produced by the WorkflowBuilder.

    Do not instantiate this class directly; use `WorkflowBuilder` which validates the
    topology first.
    """

    topology: Topology
    executors: Mapping[str, Executor]
    edges: tuple[HandoffEdge, ...] = ()
    termination: TerminationPolicy = field(default_factory=TerminationPolicy)
    name: str | None = None
    initial_executor_id: str | None = None
    triage_id: str | None = None
    candidate_ids: tuple[str, ...] = ()
    fallback_id: str | None = None
    selector: "TurnSelector | None" = None
    return_to_previous: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.executors, MappingProxyType):
            object.__setattr__(self, "executors", MappingProxyType(dict(self.executors)))

    @property
    def executor_ids(self) -> tuple[str, ...]:
        """Executor ids in declaration order."""
        return tuple(self.executors)

    def get_executor(self, executor_id: str) -> Executor:
        try:
            return self.executors[executor_id]
        except KeyError:
            raise KeyError(
                f"Executor '{executor_id}' is not part of this workflow. Available: {list(self.executors)}"
            ) from None

    def targets_of(self, source_id: str) -> tuple[str, ...]:
        """Return the declared handoff targets of ``source_id`` in edge order."""
        return tuple(edge.target_id for edge in self.edges if edge.source_id == source_id)

    def to_dict(self) -> dict[str, Any]:
        """Describe the graph structure (responders and selectors excluded)."""
        data: dict[str, Any] = {
            "topology": self.topology.value,
            "name": self.name,
            "executors": [executor.to_dict() for executor in self.executors.values()],
            "termination": {
                "max_iterations": self.termination.max_iterations,
                "max_handoffs": self.termination.max_handoffs,
            },
        }
        if self.topology == Topology.HANDOFF:
            data["initial_executor_id"] = self.initial_executor_id
            data["edges"] = [{"source": edge.source_id, "target": edge.target_id} for edge in self.edges]
        elif self.topology == Topology.ROUTED:
            data["triage_id"] = self.triage_id
            data["candidate_ids"] = list(self.candidate_ids)
            data["fallback_id"] = self.fallback_id
        elif self.topology == Topology.GROUP_CHAT and self.selector is not None:
            data["selector"] = type(self.selector).__name__
        return data
