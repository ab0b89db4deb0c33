"""Thread context reuse: carry resolved entity ids into follow-up replies.

Follow-ups like "yes", "1" or "what were the action items?" should not
re-run entity resolution. Only the ids from the last interaction are
reused; the previous answer text never is.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from src.config import settings
from src.resolution.models import MeetingOption, ThreadContext
from src.threads.store import ThreadStore

logger = logging.getLogger(__name__)

OVERRIDE_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"\b(different|another|other)\s+(meeting|call|customer|company)\b", re.IGNORECASE),
    # "what about last quarter" / "show me last month", not a bare "last month"
    re.compile(r"\b(what|show|tell|give|from|in)\s+(about\s+)?last\s+(quarter|month|year)\b", re.IGNORECASE),
    re.compile(r"\bwith\s+[A-Z][a-z]+\s+(about|regarding)\b"),
    re.compile(r"\b(switch|change)\s+to\b", re.IGNORECASE),
]

_NUMBERED_REPLY = re.compile(
    r"^\s*(?:(?:option|number|no\.?)\s*|#)?(\d{1,2})\s*[.)!]?\s*$", re.IGNORECASE
)
_ORDINALS = {"first": 1, "second": 2, "third": 3, "fourth": 4, "fifth": 5}
_ORDINAL_REPLY = re.compile(
    rf"^\s*(?:the\s+)?({'|'.join(_ORDINALS)})(?:\s+one)?\s*[.!]?\s*$", re.IGNORECASE
)
_AFFIRMATIVE = re.compile(
    r"^\s*(yes|yeah|yep|yup|ok|okay|sure|please|do\s+it|go\s+ahead|sounds\s+good)"
    r"(\s+please)?\s*[.!]*\s*$",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class PendingOffer:
    """Something the assistant offered to do next, e.g. "want the full list?"."""

    value: str
    timestamp_ms: int | None = None

    def is_expired(self, now_ms: int, ttl_ms: int) -> bool:
        # Offers without a timestamp can't be aged, so they are never honored
        if self.timestamp_ms is None:
            return True
        return now_ms - self.timestamp_ms > ttl_ms


@dataclass(frozen=True)
class ThreadResolution:
    thread_context: ThreadContext | None = None
    awaiting_clarification: str | None = None
    company_name_from_context: str | None = None
    proposed_interpretation: dict[str, Any] | None = None
    original_question: str | None = None
    last_response_type: str | None = None
    pending_offer: str | None = None
    options: tuple[MeetingOption, ...] = ()


EMPTY_RESOLUTION = ThreadResolution()


def should_reuse_thread_context(message_text: str, short_reply_words: int | None = None) -> bool:
    """Whether a reply should inherit the thread's resolved entities.

    Short replies (fewer than five words) always reuse context. Longer ones
    reuse it unless they explicitly point somewhere else.
    """
    limit = short_reply_words or settings.short_reply_word_limit
    if len(message_text.split()) < limit:
        return True
    return not any(p.search(message_text) for p in OVERRIDE_PATTERNS)


def parse_option_choice(text: str) -> int | None:
    """1-based option number from "2", "#2", "option 2" or "the second one"."""
    match = _NUMBERED_REPLY.match(text)
    if match:
        return int(match.group(1))
    match = _ORDINAL_REPLY.match(text)
    if match:
        return _ORDINALS[match.group(1).lower()]
    return None


def is_affirmative(text: str) -> bool:
    return bool(_AFFIRMATIVE.match(text))


def dump_options(options: list[MeetingOption] | tuple[MeetingOption, ...]) -> list[dict[str, Any]]:
    """JSON-safe form of clarification options, as stored in the thread log."""
    return [
        {
            "meeting_id": o.meeting_id,
            "date": o.date.isoformat(),
            "company_id": o.company_id,
            "company_name": o.company_name,
            "name": o.name,
        }
        for o in options
    ]


def resolve_thread_context(
    store: ThreadStore,
    thread_id: str,
    text: str,
    is_reply: bool,
    now_ms: int | None = None,
) -> ThreadResolution:
    """Read the thread's last interaction and surface its reusable state.

    Read-only. Store failures are logged and yield an empty resolution.
    """
    if not is_reply:
        return EMPTY_RESOLUTION

    if not should_reuse_thread_context(text):
        logger.info("Thread %s: message overrides context, resolving fresh", thread_id)
        return EMPTY_RESOLUTION

    try:
        prior = store.get_last_interaction(thread_id)
    except Exception:
        logger.exception("Failed to look up prior interaction for thread %s", thread_id)
        return EMPTY_RESOLUTION

    if prior is None:
        logger.debug("No prior interaction for thread %s", thread_id)
        return EMPTY_RESOLUTION

    resolution = prior.resolution
    layers = prior.context_layers

    context = ThreadContext(
        meeting_id=prior.meeting_id or resolution.get("meeting_id"),
        company_id=prior.company_id or resolution.get("company_id"),
    )

    offer = _live_offer(resolution, now_ms if now_ms is not None else int(time.time() * 1000))

    logger.info(
        "Thread %s context: meeting=%s company=%s awaiting=%s offer=%s",
        thread_id,
        context.meeting_id or "none",
        context.company_id or "none",
        layers.get("awaiting_clarification") or "none",
        offer or "none",
    )

    return ThreadResolution(
        thread_context=context,
        awaiting_clarification=layers.get("awaiting_clarification"),
        company_name_from_context=resolution.get("company_name"),
        proposed_interpretation=layers.get("proposed_interpretation"),
        original_question=prior.question_text or None,
        last_response_type=layers.get("last_response_type"),
        pending_offer=offer,
        options=_stored_options(resolution.get("options")),
    )


def _live_offer(resolution: dict[str, Any], now_ms: int) -> str | None:
    value = resolution.get("pending_offer")
    if not value:
        return None

    offer = PendingOffer(value=value, timestamp_ms=resolution.get("offer_timestamp"))
    if offer.is_expired(now_ms, settings.pending_offer_ttl_seconds * 1000):
        logger.info("Discarding stale pending offer %r", value)
        return None
    return offer.value


def _stored_options(raw: Any) -> tuple[MeetingOption, ...]:
    if not isinstance(raw, list):
        return ()
    options = []
    for entry in raw:
        try:
            options.append(
                MeetingOption(
                    meeting_id=entry["meeting_id"],
                    date=datetime.fromisoformat(entry["date"]),
                    company_name=entry["company_name"],
                    name=entry.get("name"),
                    company_id=entry.get("company_id"),
                )
            )
        except (KeyError, TypeError, ValueError):
            logger.warning("Ignoring malformed stored meeting option: %r", entry)
    return tuple(options)
