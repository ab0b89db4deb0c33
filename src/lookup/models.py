"""Data models for entity lookup results."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class EntityRef:
    """A resolved company or meeting: stable id plus display name."""

    id: str
    display_name: str


@dataclass(frozen=True)
class MeetingRecord:
    """A meeting (transcript) row with its effective meeting time."""

    id: str
    company_id: str | None
    meeting_at: datetime
    name: str | None = None
    company_name: str | None = None
    leverage_team: list[str] = field(default_factory=list)
    customer_names: list[str] = field(default_factory=list)

    @property
    def ref(self) -> EntityRef:
        return EntityRef(id=self.id, display_name=self.name or self.id)

    @property
    def attendees(self) -> list[str]:
        """Canonical attendee names, team first."""
        return [*self.leverage_team, *self.customer_names]
