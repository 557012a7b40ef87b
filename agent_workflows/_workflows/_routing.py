# Copyright (c) Microsoft. All rights reserved.

"""Routing decisions for the routed topology.

A triage executor answers in free text. Because that text is unreliable model output,
the decision is modelled explicitly: every candidate whose id or label appears in the
text (case-insensitive substring) is a match, the first match in declaration order
wins, and no match at all falls back to the configured default candidate. Routing
never fails hard.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum

from ._executor import Executor

logger = logging.getLogger(__name__)

__all__ = ["RoutingDecision", "RoutingOutcome", "render_triage_prompt", "resolve_route"]


class RoutingOutcome(str, Enum):
    """How a routing decision was reached."""

    MATCHED = "matched"
    """Exactly one candidate matched the triage output."""
    AMBIGUOUS = "ambiguous"
    """Several candidates matched; the first in declaration order was selected."""
    FALLBACK = "fallback"
    """No candidate matched; the fallback candidate was selected."""

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class RoutingDecision:
    """Tagged result of matching a triage output against the routing candidates."""

    selected_id: str
    outcome: RoutingOutcome
    decision_text: str
    matched_ids: tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_fallback(self) -> bool:
        return self.outcome == RoutingOutcome.FALLBACK


def resolve_route(decision_text: str, candidates: Sequence[Executor], fallback_id: str) -> RoutingDecision:
    """Select the candidate named by a triage decision.

    Args:
        decision_text: Free-text output of the triage executor.
        candidates: Candidate executors in declaration order.
        fallback_id: Candidate used when nothing matches.

    Returns:
        The routing decision. Never raises on unmatched or ambiguous text.
    """
    lowered = (decision_text or "").lower()
    matched: list[str] = []
    for candidate in candidates:
        if any(name.lower() in lowered for name in candidate.routing_names):
            matched.append(candidate.id)

    if not matched:
        logger.warning(f"Triage decision matched no candidate; routing to fallback '{fallback_id}'.")
        return RoutingDecision(selected_id=fallback_id, outcome=RoutingOutcome.FALLBACK, decision_text=decision_text)

    if len(matched) > 1:
        logger.info(f"Triage decision matched {matched}; selecting first match '{matched[0]}'.")
        outcome = RoutingOutcome.AMBIGUOUS
    else:
        outcome = RoutingOutcome.MATCHED
    return RoutingDecision(
        selected_id=matched[0],
        outcome=outcome,
        decision_text=decision_text,
        matched_ids=tuple(matched),
    )


def render_triage_prompt(request: str, candidates: Sequence[Executor]) -> str:
    """Build the prompt asking a triage executor which candidate should handle ``request``."""
    lines = [
        "Analyze this request and decide which team member should handle it.",
        "",
        f"REQUEST: {request}",
        "",
        "AVAILABLE MEMBERS:",
    ]
    for candidate in candidates:
        name = (candidate.label or candidate.id).upper()
        description = f": {candidate.description}" if candidate.description else ""
        lines.append(f"- {name}{description}")
    lines.extend([
        "",
        "Respond ONLY with the name of the most appropriate member followed by a brief explanation of why.",
        "Format: MEMBER_NAME | Reason",
    ])
    return "\n".join(lines)
