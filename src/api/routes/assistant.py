"""Assistant endpoint: answer one chat message inside a thread."""

from __future__ import annotations

import asyncio
import logging

from anthropic import APIError
from fastapi import APIRouter, Depends, HTTPException, Request

from src.api.deps import get_entity_store, get_thread_store
from src.api.models import (
    AssistantMessageRequest,
    AssistantMessageResponse,
    MeetingOptionResponse,
)
from src.assistant.notifier import HttpNotifier
from src.assistant.pipeline import (
    AssistantDeps,
    InboundMessage,
    build_interaction_record,
    handle_message,
)
from src.config import settings
from src.extraction.extractor import ExtractionError
from src.lookup.store import EntityStore
from src.threads.store import ThreadStore

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/api/assistant/messages", response_model=AssistantMessageResponse)
async def post_message(
    request: AssistantMessageRequest,
    http_request: Request,
    store: EntityStore = Depends(get_entity_store),
    thread_store: ThreadStore = Depends(get_thread_store),
) -> AssistantMessageResponse:
    """Resolve, route and answer a message, then record the thread's ids."""
    message = InboundMessage(
        text=request.text,
        thread_id=request.thread_id,
        is_reply=request.is_reply,
    )
    deps = AssistantDeps(
        store=store,
        thread_store=thread_store,
        notifier=HttpNotifier(settings.notifier_url) if settings.notifier_url else None,
        progress=getattr(http_request.app.state, "progress", None),
    )

    try:
        reply = await handle_message(message, deps)
    except APIError as exc:
        raise HTTPException(status_code=503, detail=f"LLM unavailable: {exc.message}") from exc
    except ExtractionError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    if message.thread_id:
        try:
            await asyncio.to_thread(
                thread_store.record_interaction, build_interaction_record(message, reply)
            )
        except Exception:
            logger.exception("Failed to record interaction for thread %s", message.thread_id)

    return AssistantMessageResponse(
        text=reply.text,
        capability_name=reply.capability_name,
        needs_clarification=reply.needs_clarification,
        options=[
            MeetingOptionResponse(
                meeting_id=o.meeting_id,
                date=o.date.isoformat(),
                company_name=o.company_name,
                name=o.name,
            )
            for o in reply.options
        ],
        meeting_id=reply.resolved_entities.meeting_id,
        company_id=reply.resolved_entities.company_id,
    )
