"""Action-item endpoint: extract next steps from one meeting's transcript."""

from __future__ import annotations

import asyncio

from anthropic import APIError
from fastapi import APIRouter, Depends, HTTPException

from src.api.deps import get_entity_store
from src.api.models import ActionItemResponse, ActionItemsResponse
from src.extraction.extractor import ExtractionError, extract_action_items
from src.lookup.store import EntityStore

router = APIRouter()


@router.post("/api/meetings/{meeting_id}/action-items", response_model=ActionItemsResponse)
async def extract_meeting_action_items(
    meeting_id: str, store: EntityStore = Depends(get_entity_store)
) -> ActionItemsResponse:
    """Run action-state extraction for a meeting.

    Nothing is persisted; the two-tier result is returned as-is.
    """
    meeting = await asyncio.to_thread(store.get_meeting, meeting_id)
    if meeting is None:
        raise HTTPException(status_code=404, detail="Meeting not found")

    chunks = await asyncio.to_thread(store.get_transcript_chunks, meeting_id)
    if not chunks:
        raise HTTPException(
            status_code=400,
            detail="Meeting has no transcript to extract from",
        )

    try:
        result = await asyncio.to_thread(
            extract_action_items,
            chunks,
            meeting.leverage_team,
            meeting.customer_names,
        )
    except APIError as exc:
        # Any Claude API failure, including timeouts and dropped connections
        raise HTTPException(status_code=503, detail=f"LLM unavailable: {exc.message}") from exc
    except ExtractionError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    return ActionItemsResponse(
        meeting_id=meeting_id,
        primary=[ActionItemResponse.from_item(i) for i in result.primary],
        secondary=[ActionItemResponse.from_item(i) for i in result.secondary],
    )
