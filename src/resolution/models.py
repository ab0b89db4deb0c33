"""Result types returned by the meeting resolver."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Union


@dataclass(frozen=True)
class ThreadContext:
    """Entity ids carried across turns of one conversation thread."""

    meeting_id: str | None = None
    company_id: str | None = None

    @property
    def is_complete(self) -> bool:
        return bool(self.meeting_id and self.company_id)


@dataclass(frozen=True)
class CompanyMatch:
    """A company identified in (or extracted upstream from) a message."""

    company_id: str
    company_name: str


@dataclass(frozen=True)
class MeetingOption:
    """One candidate meeting offered back to the user for disambiguation."""

    meeting_id: str
    date: datetime
    company_name: str
    name: str | None = None
    company_id: str | None = None


@dataclass(frozen=True)
class Resolved:
    meeting_id: str
    company_id: str
    company_name: str
    meeting_date: datetime | None = None
    was_auto_selected: bool = False


@dataclass(frozen=True)
class NeedsClarification:
    message: str
    options: list[MeetingOption] = field(default_factory=list)


@dataclass(frozen=True)
class Unresolved:
    reason: str = "no_meeting_context"


ResolutionResult = Union[Resolved, NeedsClarification, Unresolved]
