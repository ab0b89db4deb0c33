"""Pydantic request/response schemas for the Meeting Assistant API."""

from __future__ import annotations

from pydantic import BaseModel

from src.extraction.models import ActionItem, ActionType


class AssistantMessageRequest(BaseModel):
    """Request body for the /api/assistant/messages endpoint."""

    text: str
    thread_id: str | None = None
    is_reply: bool = False


class MeetingOptionResponse(BaseModel):
    """A candidate meeting offered for disambiguation."""

    meeting_id: str
    date: str
    company_name: str
    name: str | None = None


class AssistantMessageResponse(BaseModel):
    """Response body for the /api/assistant/messages endpoint."""

    text: str
    capability_name: str | None = None
    needs_clarification: bool = False
    options: list[MeetingOptionResponse] = []
    meeting_id: str | None = None
    company_id: str | None = None


class ActionItemResponse(BaseModel):
    """A single action item in API responses."""

    action: str
    owner: str
    type: ActionType
    deadline: str
    evidence: str
    confidence: float

    @classmethod
    def from_item(cls, item: ActionItem) -> ActionItemResponse:
        return cls(
            action=item.action,
            owner=item.owner,
            type=item.type,
            deadline=item.deadline,
            evidence=item.evidence,
            confidence=item.confidence,
        )


class ActionItemsResponse(BaseModel):
    """Response body for the /api/meetings/{id}/action-items endpoint."""

    meeting_id: str
    primary: list[ActionItemResponse] = []
    secondary: list[ActionItemResponse] = []
