# Copyright (c) Microsoft. All rights reserved.

from ._context_store import ContextStore, InMemoryContextStore, StoredConversation
from ._engine import ExecutionEngine, WorkflowRunResult
from ._events import (
    AgentRunUpdateEvent,
    ExecutorCompletedEvent,
    ExecutorEvent,
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
from ._graph import (
    DEFAULT_MAX_HANDOFFS,
    DEFAULT_MAX_ITERATIONS,
    HandoffEdge,
    TerminationPolicy,
    Topology,
    WorkflowGraph,
)
from ._group_chat import (
    FunctionTurnSelector,
    NextSpeaker,
    RoundRobinTurnSelector,
    SpeakerSelection,
    Terminate,
    TerminationPhraseSelector,
    TurnSelector,
    TurnSelectorState,
)
from ._handoff import HandoffIntent, HandoffRegistry, HandoffResolution
from ._responder import FunctionResponder, ResponderProtocol, StreamingResponderProtocol
from ._routing import RoutingDecision, RoutingOutcome, render_triage_prompt, resolve_route
from ._settings import WorkflowSettings
from ._workflow_builder import WorkflowBuilder

__all__ = [
    "DEFAULT_MAX_HANDOFFS",
    "DEFAULT_MAX_ITERATIONS",
    "AgentRunUpdateEvent",
    "ContextStore",
    "ExecutionEngine",
    "Executor",
    "ExecutorCompletedEvent",
    "ExecutorEvent",
    "ExecutorFailedEvent",
    "ExecutorStartedEvent",
    "FunctionResponder",
    "FunctionTurnSelector",
    "HandoffEdge",
    "HandoffIntent",
    "HandoffRegistry",
    "HandoffRequestedEvent",
    "HandoffResolution",
    "InMemoryContextStore",
    "NextSpeaker",
    "ResponderProtocol",
    "RoundRobinTurnSelector",
    "RoutingDecision",
    "RoutingDecisionEvent",
    "RoutingOutcome",
    "SpeakerSelection",
    "StoredConversation",
    "StreamingResponderProtocol",
    "Terminate",
    "TerminationPhraseSelector",
    "TerminationPolicy",
    "Topology",
    "TurnSelector",
    "TurnSelectorState",
    "WorkflowBuilder",
    "WorkflowErrorDetails",
    "WorkflowEvent",
    "WorkflowFailedEvent",
    "WorkflowGraph",
    "WorkflowOutputEvent",
    "WorkflowRunResult",
    "WorkflowSettings",
    "WorkflowStartedEvent",
    "render_triage_prompt",
    "resolve_route",
]
