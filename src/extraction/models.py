"""Data models for transcript chunks and action-state extraction results."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class SpeakerRole(StrEnum):
    """Which side of the meeting a transcript chunk was spoken by."""

    LEVERAGE = "leverage"
    CUSTOMER = "customer"
    UNKNOWN = "unknown"

    @classmethod
    def coerce(cls, value: str | None) -> SpeakerRole:
        """Map stored role strings (including legacy spellings) onto the enum."""
        normalized = (value or "").strip().lower()
        if normalized in ("leverage", "leverege"):
            return cls.LEVERAGE
        if normalized == "customer":
            return cls.CUSTOMER
        return cls.UNKNOWN


class ActionType(StrEnum):
    """Kinds of action state a meeting can leave behind."""

    COMMITMENT = "commitment"
    REQUEST = "request"
    BLOCKER = "blocker"
    PLAN = "plan"
    SCHEDULING = "scheduling"


@dataclass(frozen=True)
class TranscriptChunk:
    """One ordered speaker turn from an ingested transcript."""

    chunk_index: int
    speaker_role: SpeakerRole
    text: str
    speaker_name: str | None = None


@dataclass
class ActionItem:
    """A single normalized action item."""

    action: str
    owner: str
    type: ActionType
    deadline: str
    evidence: str
    confidence: float


@dataclass
class ActionExtractionResult:
    """Two-tier extraction result: primary (>=0.85) and secondary (0.70-0.84)."""

    primary: list[ActionItem] = field(default_factory=list)
    secondary: list[ActionItem] = field(default_factory=list)

    @property
    def all_items(self) -> list[ActionItem]:
        return [*self.primary, *self.secondary]
