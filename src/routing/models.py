"""Data models for capability routing and dispatch."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union


@dataclass(frozen=True)
class CapabilityDescriptor:
    """Static description of a capability, as shown to the routing model."""

    name: str
    description: str
    argument_schema: dict[str, Any]


@dataclass(frozen=True)
class CapabilityCall:
    capability_name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Fallback:
    free_text_response: str


RoutingDecision = Union[CapabilityCall, Fallback]


@dataclass
class ResolvedEntities:
    """Entity ids a capability worked with, written back to the thread."""

    company_id: str | None = None
    meeting_id: str | None = None
    people: list[str] | None = None

    def merged_with(self, override: ResolvedEntities) -> ResolvedEntities:
        """Fields set on *override* win."""
        return ResolvedEntities(
            company_id=override.company_id or self.company_id,
            meeting_id=override.meeting_id or self.meeting_id,
            people=override.people if override.people is not None else self.people,
        )


@dataclass
class CapabilityResult:
    answer: str
    resolved_entities: ResolvedEntities = field(default_factory=ResolvedEntities)
    # capability the answer offers to run next on a "yes"
    offer: str | None = None


@dataclass
class DispatchResult:
    capability_name: str
    answer: str
    resolved_entities: ResolvedEntities
    offer: str | None = None
