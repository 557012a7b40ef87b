# Copyright (c) Microsoft. All rights reserved.

"""Handoff intents for agent-initiated transfers of control.

In a handoff workflow the next active executor is decided by the active executor's own
output. Every outgoing edge of the active executor is exposed to it as an intent named
``handoff_to_<target>``; the executor signals a transfer by writing that intent (or
``transfer to <target>`` / ``HANDOFF_TO: <target>``) in its output. The requested
target is untrusted and always validated against the declared edges before the engine
follows it.
"""

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from ._graph import HandoffEdge

logger = logging.getLogger(__name__)

__all__ = ["HandoffIntent", "HandoffRegistry", "HandoffResolution", "sanitize_identifier"]


_HANDOFF_TOOL_PATTERN = re.compile(r"\b(?:handoff|transfer)[_\s:-]*to[_\s:-]+(?P<target>[\w-]+)", re.IGNORECASE)
_REASON_PATTERN = re.compile(r"(?:reason|because)\s*[:\-]?\s*(?P<reason>.+)", re.IGNORECASE)


def sanitize_identifier(value: str) -> str:
    """Turn an executor id into a token usable inside an intent name."""
    sanitized = re.sub(r"[^0-9A-Za-z_-]+", "_", value.strip()).strip("_")
    return sanitized or "agent"


@dataclass(frozen=True)
class HandoffIntent:
    """A legal transfer the active executor may request."""

    source_id: str
    target_id: str
    tool_name: str
    description: str


@dataclass(frozen=True)
class HandoffResolution:
    """Result of handoff detection containing the resolved target and the stated reason.

    Attributes:
        target_id: Executor id requested by the output (resolved through intent aliases).
        reason: Reason stated alongside the intent, if any.
        declared: Whether an edge from the source to the target was declared.
    """

    target_id: str
    reason: str | None = None
    declared: bool = True


class HandoffRegistry:
    """Exposes the legal transfer intents of each executor and parses chosen intents.

    Args:
        edges: Declared handoff edges in declaration order.
        descriptions: Optional executor descriptions used for intents whose edge has none.

    Examples:
        .. code-block:: python

            registry = HandoffRegistry([HandoffEdge("triage", "math"), HandoffEdge("triage", "history")])
            registry.for_executor("triage")  # (HandoffIntent(... tool_name='handoff_to_math' ...), ...)
            registry.parse_intent("handoff_to_math because it is algebra")  # 'math'
    """

    def __init__(self, edges: Iterable[HandoffEdge], descriptions: Mapping[str, str] | None = None) -> None:
        self._edges = tuple(edges)
        descriptions = descriptions or {}
        self._intents: dict[str, list[HandoffIntent]] = {}
        self._aliases: dict[str, str] = {}
        for edge in self._edges:
            tool_name = f"handoff_to_{sanitize_identifier(edge.target_id)}"
            description = (
                edge.description or descriptions.get(edge.target_id) or f"Handoff to the {edge.target_id} agent."
            )
            intents = self._intents.setdefault(edge.source_id, [])
            if any(intent.target_id == edge.target_id for intent in intents):
                continue
            intents.append(HandoffIntent(edge.source_id, edge.target_id, tool_name, description))
            self._aliases[edge.target_id.lower()] = edge.target_id
            self._aliases[sanitize_identifier(edge.target_id).lower()] = edge.target_id

    @property
    def edges(self) -> tuple[HandoffEdge, ...]:
        return self._edges

    def for_executor(self, executor_id: str) -> tuple[HandoffIntent, ...]:
        """Return the legal transfer intents of ``executor_id``, one per outgoing edge, in edge order."""
        return tuple(self._intents.get(executor_id, ()))

    def is_declared(self, source_id: str, target_id: str) -> bool:
        return any(intent.target_id == target_id for intent in self._intents.get(source_id, ()))

    def parse_intent(self, output: str) -> str | None:
        """Parse the transfer target named in an executor's output.

        Returns:
            The requested target id (mapped through known intent names when possible),
            or None when the output declares no transfer.
        """
        candidates = self._candidates(output)
        if not candidates:
            return None
        known = next((target for target, is_known in candidates if is_known), None)
        return known if known is not None else candidates[0][0]

    def resolve(self, source_id: str, output: str) -> HandoffResolution | None:
        """Detect and validate a transfer requested by ``source_id``.

        Returns:
            None when the output declares no transfer, otherwise a resolution whose
            ``declared`` flag tells whether the engine may follow it.
        """
        target = next(
            (target for target, _ in self._candidates(output) if self.is_declared(source_id, target)),
            None,
        )
        if target is None:
            target = self.parse_intent(output)
            if target is None:
                return None
        declared = self.is_declared(source_id, target)
        if not declared:
            logger.warning(f"Handoff requested undeclared target '{target}' from '{source_id}'.")
        return HandoffResolution(target_id=target, reason=self._extract_reason(output), declared=declared)

    def render_instructions(self, executor_id: str) -> str:
        """Describe the transfers available to ``executor_id`` for inclusion in its prompt."""
        intents = self.for_executor(executor_id)
        if not intents:
            return ""
        lines = [
            "You may transfer the conversation to another agent.",
            "To transfer, reply with the handoff name followed by 'because' and your reason.",
            "Available handoffs:",
        ]
        lines.extend(f"- {intent.tool_name}: {intent.description}" for intent in intents)
        lines.append("If you can answer yourself, answer directly without a handoff.")
        return "\n".join(lines)

    def _candidates(self, output: str) -> list[tuple[str, bool]]:
        """Every target named in ``output`` in order, flagged when it maps to a known intent."""
        if not output:
            return []
        candidates: list[tuple[str, bool]] = []
        for match in _HANDOFF_TOOL_PATTERN.finditer(output):
            candidate = match.group("target").strip()
            if not candidate:
                continue
            alias = self._aliases.get(candidate.lower())
            candidates.append((alias, True) if alias is not None else (candidate, False))
        return candidates

    @staticmethod
    def _extract_reason(output: str) -> str | None:
        match = _REASON_PATTERN.search(output)
        if match:
            reason = match.group("reason").strip()
            return reason or None
        intent = _HANDOFF_TOOL_PATTERN.search(output)
        if intent is None:
            return None
        remainder = output[intent.end() :].strip(" \t:-,.")
        first_line = remainder.splitlines()[0].strip() if remainder else ""
        return first_line or None
