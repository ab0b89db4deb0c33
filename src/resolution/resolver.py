"""Meeting resolution cascade.

Resolves which single meeting a message is about, or says precisely why it
can't. Steps run in strict order and the first match wins:

1. thread context (both ids known) always wins;
2. an explicit ``meeting: <uuid>`` reference;
3. temporal language ("last call", "meeting on Aug 7", "meeting last week",
   "meeting last month") scoped to the mentioned company;
4. a classifier-detected meeting reference without temporal language,
   treated as "most recent";
5. a bare company mention, auto-selecting the most recent meeting.

More than one candidate meeting for the same criterion always produces a
clarification, never a silent pick.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from datetime import datetime, timezone

from src.lookup.companies import find_company_in_message
from src.lookup.models import MeetingRecord
from src.lookup.store import EntityStore
from src.pipeline_config import PipelineConfig
from src.resolution.models import (
    CompanyMatch,
    MeetingOption,
    NeedsClarification,
    Resolved,
    ResolutionResult,
    ThreadContext,
    Unresolved,
)
from src.resolution.temporal import (
    TEMPORAL_PATTERNS,
    day_window,
    find_date_reference,
    format_meeting_date,
    has_temporal_meeting_reference,
    mentions_last_meeting,
    parse_date_reference,
    rolling_window,
)

logger = logging.getLogger(__name__)

UNKNOWN_COMPANY = "Unknown Company"
NO_MEETING_CONTEXT = "no_meeting_context"

ASK_FOR_COMPANY = (
    "Which company are you asking about? Please mention the company name "
    "so I can find the right meeting."
)

CHOOSE_BY_NUMBER = "Which one should I use? Reply with its number."

_EXPLICIT_MEETING_ID = re.compile(r"\bmeeting[:\s]+([a-f0-9-]{36})\b", re.IGNORECASE)


def resolve_meeting(
    message: str,
    store: EntityStore,
    thread_context: ThreadContext | None = None,
    extracted_company: CompanyMatch | None = None,
    meeting_reference_detected: bool = False,
    now: datetime | None = None,
    config: PipelineConfig | None = None,
    fallback_company: CompanyMatch | None = None,
) -> ResolutionResult:
    """Resolve the meeting a message refers to.

    Args:
        message: The user's message text.
        store: Read-only entity store.
        thread_context: Ids carried over from the thread, if any.
        extracted_company: Company already identified upstream; skips
            matching company names in the message.
        meeting_reference_detected: Set when a classifier judged the message
            to be about a specific meeting.
        now: Reference time for relative dates (defaults to current UTC time).
        config: Window sizes; defaults to :class:`PipelineConfig`.
        fallback_company: Company to scope to when the message names none,
            usually the one already attached to the thread.

    Returns:
        ``Resolved``, ``NeedsClarification`` or ``Unresolved``.
    """
    config = config or PipelineConfig()
    now = now or datetime.now(timezone.utc)

    # 1. Thread context
    if thread_context and thread_context.meeting_id and thread_context.company_id:
        logger.info("Resolved meeting %s from thread context", thread_context.meeting_id)
        meeting = store.get_meeting(thread_context.meeting_id)
        return Resolved(
            meeting_id=thread_context.meeting_id,
            company_id=thread_context.company_id,
            company_name=(meeting.company_name if meeting else None) or UNKNOWN_COMPANY,
            meeting_date=meeting.meeting_at if meeting else None,
        )

    # 2. Explicit meeting reference
    explicit = _EXPLICIT_MEETING_ID.search(message)
    if explicit:
        meeting = store.get_meeting(explicit.group(1).lower())
        if meeting is not None and meeting.company_id:
            logger.info("Resolved explicit meeting reference %s", meeting.id)
            return Resolved(
                meeting_id=meeting.id,
                company_id=meeting.company_id,
                company_name=meeting.company_name or UNKNOWN_COMPANY,
                meeting_date=meeting.meeting_at,
            )
        logger.debug("Explicit meeting reference %s not usable", explicit.group(1))

    # 3. Temporal language, scoped to a company
    company = extracted_company or _company_from_message(message, store) or fallback_company
    if company is None:
        if has_temporal_meeting_reference(message):
            return NeedsClarification(message=ASK_FOR_COMPANY)
        return Unresolved(reason=NO_MEETING_CONTEXT)

    name = company.company_name

    if mentions_last_meeting(message):
        logger.info("Resolving most recent meeting for %s", name)
        return _most_recent(company, store)

    raw_date = find_date_reference(message)
    if raw_date is not None:
        target = parse_date_reference(raw_date, now.date())
        if target is None:
            return NeedsClarification(
                message=(
                    f'I couldn\'t parse the date "{raw_date}". Could you rephrase it? '
                    '(e.g., "meeting on Aug 7" or "meeting on 8/7")'
                )
            )
        start, end = day_window(target, now)
        meetings = store.meetings_in_range(company.company_id, start, end)
        shown = format_meeting_date(target)
        return _pick(
            meetings,
            company,
            empty=f"I don't see any {name} meetings on {shown}.",
            ambiguous=_same_day_prompt(meetings, name, shown),
        )

    if TEMPORAL_PATTERNS["last_week"].search(message):
        start, end = rolling_window(now, config.last_week_days)
        meetings = store.meetings_in_range(company.company_id, start, end)
        return _pick(
            meetings,
            company,
            empty=f"I don't see any {name} meetings from last week.",
            ambiguous=_range_prompt(meetings, f"I see {len(meetings)} {name} meetings from last week:"),
        )

    if TEMPORAL_PATTERNS["last_month"].search(message):
        start, end = rolling_window(now, config.last_month_days)
        meetings = store.meetings_in_range(company.company_id, start, end)
        return _pick(
            meetings,
            company,
            empty=f"I don't see any {name} meetings from last month.",
            ambiguous=_range_prompt(
                meetings, f"I see {len(meetings)} {name} meetings from the last month:"
            ),
        )

    # 4. Classifier said "a specific meeting" but no pattern matched
    if meeting_reference_detected:
        logger.info("Classifier meeting reference, defaulting to most recent for %s", name)
        return _most_recent(company, store)

    # 5. Bare company mention
    logger.info("Company mentioned without temporal language, auto-selecting for %s", name)
    return _most_recent(company, store, auto_selected=True)


def _company_from_message(message: str, store: EntityStore) -> CompanyMatch | None:
    ref = find_company_in_message(message, store)
    if ref is None:
        return None
    return CompanyMatch(company_id=ref.id, company_name=ref.display_name)


def _most_recent(
    company: CompanyMatch, store: EntityStore, auto_selected: bool = False
) -> ResolutionResult:
    meetings = store.meetings_on_most_recent_date(company.company_id)
    shown = format_meeting_date(meetings[0].meeting_at) if meetings else ""
    return _pick(
        meetings,
        company,
        empty=f"I don't see any meetings with {company.company_name} on record.",
        ambiguous=_same_day_prompt(meetings, company.company_name, shown),
        auto_selected=auto_selected,
    )


def _pick(
    meetings: Sequence[MeetingRecord],
    company: CompanyMatch,
    empty: str,
    ambiguous: str,
    auto_selected: bool = False,
) -> ResolutionResult:
    if not meetings:
        return NeedsClarification(message=empty)

    if len(meetings) == 1:
        meeting = meetings[0]
        return Resolved(
            meeting_id=meeting.id,
            company_id=company.company_id,
            company_name=company.company_name,
            meeting_date=meeting.meeting_at,
            was_auto_selected=auto_selected,
        )

    return NeedsClarification(
        message=ambiguous,
        options=[
            MeetingOption(
                meeting_id=m.id,
                date=m.meeting_at,
                company_name=company.company_name,
                name=m.name,
                company_id=company.company_id,
            )
            for m in meetings
        ],
    )


def _same_day_prompt(meetings: Sequence[MeetingRecord], company_name: str, shown: str) -> str:
    lines = [f"{i}. {m.name or f'Meeting {i}'}" for i, m in enumerate(meetings, start=1)]
    return (
        f"I see multiple {company_name} meetings on {shown}:\n"
        + "\n".join(lines)
        + "\n"
        + CHOOSE_BY_NUMBER
    )


def _range_prompt(meetings: Sequence[MeetingRecord], header: str) -> str:
    lines = [
        f"{i}. {format_meeting_date(m.meeting_at)}" + (f" - {m.name}" if m.name else "")
        for i, m in enumerate(meetings, start=1)
    ]
    return header + "\n" + "\n".join(lines) + "\n" + CHOOSE_BY_NUMBER
