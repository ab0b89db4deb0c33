"""Route a user message to a registered capability with Claude tool use."""

from __future__ import annotations

import json
import logging
from typing import Any

from anthropic import Anthropic

from src.config import settings
from src.routing.models import CapabilityCall, Fallback, RoutingDecision
from src.routing.registry import CapabilityRegistry

logger = logging.getLogger(__name__)

ROUTER_PROMPT = """\
You route user requests about customer meetings to the correct capability.
Call exactly one tool when a capability can answer the request. Pass ids only \
when they appear in the message; omit them otherwise.
Always select a capability when the intent plausibly matches one, even if \
arguments such as the company or meeting are missing. Missing arguments are \
filled in from the conversation afterwards.
Only greetings and questions about what you can do get no tool call; answer \
those briefly in plain text."""

DEFAULT_FALLBACK = (
    "I'm not sure how to help with that yet. Try asking about a customer's "
    "meetings, attendees or next steps."
)


def route_message(
    text: str,
    registry: CapabilityRegistry,
    client: Anthropic | None = None,
) -> RoutingDecision:
    """Pick the capability that should answer *text*.

    Returns:
        A :class:`CapabilityCall` for a valid tool call on a registered
        capability, otherwise a :class:`Fallback` carrying any text the
        model produced.

    Raises:
        anthropic.APIError: Transport and API errors propagate.
    """
    client = client or Anthropic(
        api_key=settings.anthropic_api_key, timeout=settings.llm_timeout_seconds
    )
    response = client.messages.create(
        model=settings.routing_model,
        max_tokens=1024,
        temperature=0,
        system=ROUTER_PROMPT,
        tools=registry.tools(),
        tool_choice={"type": "auto"},
        messages=[{"role": "user", "content": text}],
    )
    decision = _parse_routing_response(response, registry)
    if isinstance(decision, CapabilityCall):
        logger.info("Router selected %s", decision.capability_name)
    else:
        logger.info("Router fell back to a free-text response")
    return decision


def _parse_routing_response(response: Any, registry: CapabilityRegistry) -> RoutingDecision:
    text_parts: list[str] = []

    if getattr(response, "stop_reason", None) == "refusal":
        return Fallback(free_text_response=DEFAULT_FALLBACK)

    for block in response.content or []:
        if block.type == "text":
            text_parts.append(block.text)
            continue
        if block.type != "tool_use":
            continue

        if block.name not in registry:
            logger.warning("Router chose unknown capability %r", block.name)
            return Fallback(free_text_response=DEFAULT_FALLBACK)

        args = block.input
        if isinstance(args, str):
            try:
                args = json.loads(args)
            except json.JSONDecodeError:
                logger.warning("Router produced unparsable arguments for %s", block.name)
                return Fallback(free_text_response=DEFAULT_FALLBACK)
        if not isinstance(args, dict):
            logger.warning("Router produced non-object arguments for %s", block.name)
            return Fallback(free_text_response=DEFAULT_FALLBACK)

        return CapabilityCall(capability_name=block.name, arguments=args)

    text = "".join(text_parts).strip()
    return Fallback(free_text_response=text or DEFAULT_FALLBACK)
