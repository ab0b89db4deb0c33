"""End-to-end handling of one inbound assistant message.

Thread context is checked first. A numbered reply to an earlier "which
meeting?" question, or a "yes" to an offer, is answered from the stored
thread state. Otherwise entity resolution and capability routing run
concurrently, and the reply is either a clarification question or the
output of the routed capability scoped to the resolved meeting.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from anthropic import Anthropic
from openai import OpenAI
from pydantic import ValidationError

from src.lookup.store import EntityStore
from src.pipeline_config import PipelineConfig
from src.resolution.classifier import detect_meeting_reference
from src.resolution.models import (
    CompanyMatch,
    MeetingOption,
    NeedsClarification,
    Resolved,
    ResolutionResult,
    ThreadContext,
)
from src.resolution.resolver import resolve_meeting
from src.resolution.temporal import format_meeting_date
from src.routing.capabilities import default_registry
from src.routing.models import CapabilityCall, ResolvedEntities, RoutingDecision
from src.routing.registry import CapabilityContext, CapabilityRegistry
from src.routing.router import DEFAULT_FALLBACK, route_message
from src.threads.context import (
    EMPTY_RESOLUTION,
    ThreadResolution,
    dump_options,
    is_affirmative,
    parse_option_choice,
    resolve_thread_context,
)
from src.threads.progress import Notifier, ProgressRegistry
from src.threads.store import InteractionRecord, ThreadStore

logger = logging.getLogger(__name__)

AWAITING_MEETING = "meeting"


@dataclass
class InboundMessage:
    text: str
    thread_id: str | None = None
    is_reply: bool = False


@dataclass
class AssistantReply:
    text: str
    options: list[MeetingOption] = field(default_factory=list)
    capability_name: str | None = None
    resolution: ResolutionResult | None = None
    resolved_entities: ResolvedEntities = field(default_factory=ResolvedEntities)
    company_name: str | None = None
    # routed capability held back while a clarification is pending
    proposed_interpretation: dict[str, Any] | None = None
    pending_offer: str | None = None

    @property
    def needs_clarification(self) -> bool:
        return isinstance(self.resolution, NeedsClarification)


@dataclass
class AssistantDeps:
    """Collaborators for :func:`handle_message`; clients default to env config."""

    store: EntityStore
    thread_store: ThreadStore
    registry: CapabilityRegistry = field(default_factory=default_registry)
    config: PipelineConfig = PipelineConfig()
    notifier: Notifier | None = None
    progress: ProgressRegistry | None = None
    anthropic_client: Anthropic | None = None
    openai_client: OpenAI | None = None


async def handle_message(message: InboundMessage, deps: AssistantDeps) -> AssistantReply:
    """Answer one message. Model and store errors propagate to the caller."""
    thread_id = message.thread_id
    progress = deps.progress or ProgressRegistry()
    if deps.notifier is not None and thread_id is not None:
        progress.start(thread_id, deps.notifier)

    try:
        return await _answer(message, deps)
    finally:
        if thread_id is not None:
            await progress.finish(thread_id)


async def _answer(message: InboundMessage, deps: AssistantDeps) -> AssistantReply:
    thread = EMPTY_RESOLUTION
    if message.thread_id is not None:
        thread = await asyncio.to_thread(
            resolve_thread_context,
            deps.thread_store,
            message.thread_id,
            message.text,
            message.is_reply,
        )
    thread_context = thread.thread_context

    chosen = _chosen_option(message.text, thread)
    if chosen is not None:
        return await _answer_chosen_option(message, deps, thread, chosen)

    thread_company = None
    if thread_context and thread_context.company_id and thread.company_name_from_context:
        thread_company = CompanyMatch(thread_context.company_id, thread.company_name_from_context)

    meeting_ref = False
    if not (thread_context and thread_context.is_complete):
        detection = await asyncio.to_thread(
            detect_meeting_reference, message.text, deps.openai_client
        )
        meeting_ref = detection.has_meeting_ref

    resolve = asyncio.to_thread(
        resolve_meeting,
        message.text,
        deps.store,
        thread_context,
        None,
        meeting_ref,
        None,
        deps.config,
        thread_company,
    )
    offer = thread.pending_offer
    if offer and offer in deps.registry and is_affirmative(message.text):
        logger.info("Accepting pending offer %s", offer)
        resolution = await resolve
        decision: RoutingDecision = CapabilityCall(offer)
    else:
        resolution, decision = await asyncio.gather(
            resolve,
            asyncio.to_thread(route_message, message.text, deps.registry, deps.anthropic_client),
        )

    company_name = thread.company_name_from_context
    if isinstance(resolution, Resolved):
        company_name = resolution.company_name

    if isinstance(resolution, NeedsClarification):
        logger.info("Asking for clarification: %s", resolution.message.splitlines()[0])
        company_id = thread_context.company_id if thread_context else None
        if resolution.options:
            company_id = resolution.options[0].company_id or company_id
            company_name = resolution.options[0].company_name
        proposed = None
        if isinstance(decision, CapabilityCall):
            proposed = {
                "capability_name": decision.capability_name,
                "arguments": dict(decision.arguments),
            }
        return AssistantReply(
            text=resolution.message,
            options=list(resolution.options),
            resolution=resolution,
            resolved_entities=ResolvedEntities(company_id=company_id),
            company_name=company_name,
            proposed_interpretation=proposed,
        )

    scope = thread_context
    if isinstance(resolution, Resolved):
        scope = ThreadContext(meeting_id=resolution.meeting_id, company_id=resolution.company_id)

    return await _reply(decision, resolution, scope, company_name, deps)


async def _answer_chosen_option(
    message: InboundMessage,
    deps: AssistantDeps,
    thread: ThreadResolution,
    chosen: Resolved | NeedsClarification,
) -> AssistantReply:
    """Answer the question that was pending while we asked which meeting."""
    if not isinstance(chosen, Resolved):
        return AssistantReply(
            text=chosen.message,
            options=list(chosen.options),
            resolution=chosen,
            resolved_entities=_entities_from(thread.thread_context),
            company_name=thread.company_name_from_context,
            proposed_interpretation=thread.proposed_interpretation,
        )

    logger.info("Clarification answered with meeting %s", chosen.meeting_id)
    decision: RoutingDecision | None = _proposed_call(thread.proposed_interpretation, deps.registry)
    if decision is None:
        question = thread.original_question or message.text
        decision = await asyncio.to_thread(
            route_message, question, deps.registry, deps.anthropic_client
        )

    scope = ThreadContext(meeting_id=chosen.meeting_id, company_id=chosen.company_id)
    return await _reply(decision, chosen, scope, chosen.company_name, deps)


async def _reply(
    decision: RoutingDecision,
    resolution: ResolutionResult,
    scope: ThreadContext | None,
    company_name: str | None,
    deps: AssistantDeps,
) -> AssistantReply:
    if not isinstance(decision, CapabilityCall):
        return AssistantReply(
            text=decision.free_text_response,
            resolution=resolution,
            resolved_entities=_entities_from(scope),
            company_name=company_name,
        )

    ctx = CapabilityContext(store=deps.store, thread_context=scope, config=deps.config)
    try:
        dispatched = await asyncio.to_thread(deps.registry.dispatch, decision, ctx)
    except ValidationError:
        logger.warning("Arguments for %s failed validation", decision.capability_name)
        return AssistantReply(
            text=DEFAULT_FALLBACK,
            resolution=resolution,
            resolved_entities=_entities_from(scope),
            company_name=company_name,
        )

    text = dispatched.answer
    if isinstance(resolution, Resolved) and resolution.was_auto_selected:
        text = _auto_selected_note(resolution) + "\n\n" + text

    return AssistantReply(
        text=text,
        capability_name=dispatched.capability_name,
        resolution=resolution,
        resolved_entities=dispatched.resolved_entities,
        company_name=company_name,
        pending_offer=dispatched.offer,
    )


def _chosen_option(text: str, thread: ThreadResolution) -> Resolved | NeedsClarification | None:
    """Map a numbered reply onto the meeting options the thread is waiting on."""
    if thread.awaiting_clarification != AWAITING_MEETING or not thread.options:
        return None
    number = parse_option_choice(text)
    if number is None:
        return None

    options = thread.options
    if not 1 <= number <= len(options):
        return NeedsClarification(
            message=f"Please reply with a number between 1 and {len(options)}.",
            options=list(options),
        )

    option = options[number - 1]
    context = thread.thread_context
    company_id = option.company_id or (context.company_id if context else None)
    if company_id is None:
        return None
    return Resolved(
        meeting_id=option.meeting_id,
        company_id=company_id,
        company_name=option.company_name,
        meeting_date=option.date,
    )


def _proposed_call(
    proposed: dict[str, Any] | None, registry: CapabilityRegistry
) -> CapabilityCall | None:
    if not proposed:
        return None
    name = proposed.get("capability_name")
    arguments = proposed.get("arguments") or {}
    if name not in registry or not isinstance(arguments, dict):
        return None
    return CapabilityCall(name, dict(arguments))


def _entities_from(context: ThreadContext | None) -> ResolvedEntities:
    if context is None:
        return ResolvedEntities()
    return ResolvedEntities(company_id=context.company_id, meeting_id=context.meeting_id)


def _auto_selected_note(resolution: Resolved) -> str:
    when = format_meeting_date(resolution.meeting_date)
    suffix = f" ({when})" if when else ""
    return f"_Using the most recent {resolution.company_name} meeting{suffix}._"


def build_interaction_record(
    message: InboundMessage, reply: AssistantReply, now_ms: int | None = None
) -> InteractionRecord:
    """The thread-store row that lets the next reply in the thread reuse ids.

    Clarifications also store the offered options and the routed capability,
    so a numbered reply can finish the original request. Offers are stamped
    so they expire.
    """
    entities = reply.resolved_entities
    resolution: dict[str, Any] = {
        "meeting_id": entities.meeting_id,
        "company_id": entities.company_id,
    }
    if reply.company_name:
        resolution["company_name"] = reply.company_name
    if reply.options:
        resolution["options"] = dump_options(reply.options)
    if reply.pending_offer:
        resolution["pending_offer"] = reply.pending_offer
        resolution["offer_timestamp"] = now_ms if now_ms is not None else int(time.time() * 1000)

    context_layers: dict[str, Any] = {"last_response_type": reply.capability_name}
    if reply.needs_clarification:
        context_layers["awaiting_clarification"] = AWAITING_MEETING
        if reply.proposed_interpretation:
            context_layers["proposed_interpretation"] = reply.proposed_interpretation

    return InteractionRecord(
        thread_id=message.thread_id or "",
        question_text=message.text,
        meeting_id=entities.meeting_id,
        company_id=entities.company_id,
        capability_name=reply.capability_name,
        resolution=resolution,
        context_layers=context_layers,
    )
