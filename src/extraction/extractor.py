"""Claude-powered extraction of action-state next steps from a meeting transcript.

The model does the judgement work (green-room filtering, immediate-resolution
checks, typing, consolidation) in a single forced tool call. Everything after
the response arrives is deterministic: owner and deadline normalization, a
few local guards that re-check the phase 1 filters against the transcript,
and two-tier confidence bucketing.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Sequence
from typing import Any

from anthropic import Anthropic
from pydantic import BaseModel, Field, ValidationError

from src.config import settings
from src.extraction.models import (
    ActionExtractionResult,
    ActionItem,
    ActionType,
    SpeakerRole,
    TranscriptChunk,
)
from src.pipeline_config import ConfidenceTier, PipelineConfig

logger = logging.getLogger(__name__)

UNASSIGNED = "Unassigned"
NOT_SPECIFIED = "Not specified"

# Tool definition for Claude structured output
EXTRACTION_TOOL: dict[str, Any] = {
    "name": "store_action_items",
    "description": (
        "Store the consolidated action items extracted from a meeting transcript. "
        "Call this exactly once, with an empty list if there are no clear actions."
    ),
    "input_schema": {
        "type": "object",
        "properties": {
            "action_items": {
                "type": "array",
                "description": "Actions that exist in the world because of this meeting.",
                "items": {
                    "type": "object",
                    "properties": {
                        "action": {
                            "type": "string",
                            "description": "Verb + object, phrased as a complete sentence.",
                        },
                        "owner": {
                            "type": "string",
                            "description": (
                                "Person name(s), not company names. 'Person A, Person B' "
                                "for several owners; 'Unassigned' only if unavoidable."
                            ),
                        },
                        "type": {
                            "type": "string",
                            "enum": [t.value for t in ActionType],
                        },
                        "deadline": {
                            "type": "string",
                            "description": "Deadline if explicitly stated, else 'Not specified'.",
                        },
                        "evidence": {
                            "type": "string",
                            "description": "Short supporting quote with filler words removed.",
                        },
                        "confidence": {
                            "type": "number",
                            "description": "Confidence score 0-1.",
                        },
                    },
                    "required": ["action", "owner", "type", "evidence", "confidence"],
                },
            },
        },
        "required": ["action_items"],
    },
}

SYSTEM_PROMPT = """\
You extract and consolidate action items from meeting transcripts.
Think like a senior operations assistant: "What actions now exist in the world \
because of this meeting?"

ACTION TYPES:
1. commitment: explicit "I will..." / "We will..." / agreement to do something
2. request: "Can you..." / "Please..." that implies follow-up action
3. blocker: "We can't proceed until..." / a dependency that must be resolved
4. plan: "The plan is to..." / "Next we'll..." / a decided course of action
5. scheduling: meeting coordination, follow-up calls, timeline decisions

PHASE 1 - EXCLUSION FILTERS (apply before extracting anything):
a) Meeting start ("green room"): find where the actual meeting begins \
("Hi everyone", "Let's get started", "Thanks for joining", guests greeted). \
Ignore every commitment made before that point ("Can you hear me?", \
"I'll share my screen", "Waiting for Bob", "Let me admit them").
b) Immediate resolution: when someone says "I will X" or "Let me X", scan the \
next 10 turns. Hand-offs followed by the new presenter speaking, screen shares \
followed by "Can you see it?", admitting participants followed by "They're in", \
sending a link followed by "Got it" / "Just pasted it" are already done. \
Discard them; they are not next steps.
c) System features vs. human tasks: statements about what the software does \
("The system provides daily reports", "Every user will have their own login", \
"It generates alerts automatically") are NOT tasks. Only extract actions a \
person will personally perform ("I will email you the daily report manually").

PHASE 2 - CANDIDATES:
- Classify each remaining action into one of the five types.
- Obligation language directed at a specific person ("You need to...", \
"We have to...", "You must...") is a HIGH-CONFIDENCE commitment (0.95).
- Permission grants and imperative instructions ("You've got the green light \
to share X", "Feel free to let them know") are high-confidence actions (0.90+).
- A chat, sync or discussion whose goal is a decision or a configuration \
("You need to chat with Randy about alert thresholds") is a mandatory next \
step. Social niceties ("Let's grab a beer") are not.
- Ignore hypotheticals, vague intentions, rejected or deferred offers, \
unanswered questions and advisory "should" statements.

PHASE 3 - CONSOLIDATION:
- Merge micro-actions that share the same owner, timeframe and operational goal.
- Never merge across different owners.
- If one utterance promises several distinct deliverables ("I'll send the \
login AND the PDF guide"), keep them as SEPARATE items.

RULES:
- Owner: the person who spoke or agreed to the action. Use canonical attendee \
spellings when provided.
- Evidence: a short quote; remove "um", "uh", "like", "you know", "I mean" and \
repeated words without changing meaning.
- Confidence: 0.95-1.0 explicit "I will"; 0.90 clear agreement to a request; \
0.85 "We will" or confirmed plan; 0.80 investigation commitment; 0.75 request \
implying action; 0.70 softer implied action; below 0.70 do not include.
- Deadline: only if explicitly stated, otherwise "Not specified".
- If choosing between more actions with uncertainty and fewer with confidence, \
choose fewer.

Use the store_action_items tool to return your results."""


class ExtractionError(ValueError):
    """The extraction response was missing, refused or malformed."""


class _ActionItemPayload(BaseModel):
    action: str
    owner: str = UNASSIGNED
    type: ActionType
    deadline: str | None = None
    evidence: str = ""
    confidence: float = Field(ge=0.0, le=1.0)


class _ExtractionPayload(BaseModel):
    action_items: list[_ActionItemPayload]


# ---------------------------------------------------------------------------
# Transcript formatting
# ---------------------------------------------------------------------------

_ROLE_LABELS = {
    SpeakerRole.LEVERAGE: "Leverage",
    SpeakerRole.CUSTOMER: "Customer",
    SpeakerRole.UNKNOWN: "Unknown",
}


def _speaker_label(chunk: TranscriptChunk) -> str:
    name = (chunk.speaker_name or "").strip()
    if name and name != "Unknown":
        return name
    return _ROLE_LABELS[chunk.speaker_role]


def format_transcript(chunks: Sequence[TranscriptChunk]) -> str:
    """Render chunks as ``[index] Speaker: text`` lines.

    Named speakers keep their name; blank or "Unknown" names fall back to
    the role label.
    """
    return "\n".join(f"[{c.chunk_index}] {_speaker_label(c)}: {c.text}" for c in chunks)


# ---------------------------------------------------------------------------
# Owner / deadline normalization
# ---------------------------------------------------------------------------


def build_canonical_attendees(
    leverage_team: Sequence[str] | None = None,
    customer_names: Sequence[str] | None = None,
) -> list[str]:
    """Merge team and customer attendee lists, dropping blanks."""
    names: list[str] = []
    for group in (leverage_team or [], customer_names or []):
        names.extend(n.strip() for n in group if n and n.strip())
    return names


_MULTI_OWNER_SPLIT = re.compile(r",\s*|\s+and\s+", re.IGNORECASE)
_HAS_AND = re.compile(r"\s+and\s+", re.IGNORECASE)


def normalize_owner_name(raw_owner: str | None, canonical_names: Sequence[str]) -> str:
    """Map a model-produced owner onto canonical attendee spellings.

    - exact match (case-insensitive) wins;
    - otherwise a first name shared by exactly one attendee wins;
    - "A and B" / "A, B" are split and each part normalized;
    - anything unmatched (and "Unassigned") passes through unchanged.
    """
    if raw_owner is None or not raw_owner.strip():
        return UNASSIGNED
    if raw_owner == UNASSIGNED:
        return raw_owner

    trimmed = raw_owner.strip()
    lower = trimmed.lower()

    if _HAS_AND.search(trimmed) or ("," in trimmed and not trimmed.startswith(",")):
        parts = [p.strip() for p in _MULTI_OWNER_SPLIT.split(trimmed) if p.strip()]
        if len(parts) > 1:
            normalized = [normalize_owner_name(p, canonical_names) for p in parts]
            kept = [n for n in normalized if n and n != UNASSIGNED]
            return ", ".join(kept) if kept else UNASSIGNED

    for name in canonical_names:
        if name.lower() == lower:
            return name

    first_name_matches = [n for n in canonical_names if n.split(" ")[0].lower() == lower]
    if len(first_name_matches) == 1:
        return first_name_matches[0]

    return trimmed


def normalize_deadline(raw_deadline: str | None) -> str:
    """Blank or missing deadlines become ``"Not specified"``."""
    if raw_deadline is None or not raw_deadline.strip():
        return NOT_SPECIFIED
    return raw_deadline.strip()


# ---------------------------------------------------------------------------
# Local guards
# ---------------------------------------------------------------------------

_MEETING_START_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"\b(hi|hello|hey)\s+(everyone|everybody|all|folks|team)\b", re.IGNORECASE),
    re.compile(r"\blet'?s\s+(get\s+started|kick\s+(it\s+)?off|dive\s+in|begin)\b", re.IGNORECASE),
    re.compile(r"\bthanks?(\s+you)?\s+(all\s+|everyone\s+)?for\s+joining\b", re.IGNORECASE),
]

# A latecomer's greeting doesn't open the meeting
_LATE_ARRIVAL = re.compile(
    r"\b(sorry|apologies)\b.*\b(late|delay)\b|\bjust\s+(joined|joining|got\s+(in|here))\b",
    re.IGNORECASE,
)

# Setup talk that can precede the opening: audio, video, screens, waiting
_SETUP_CHATTER = re.compile(
    r"\b(hear|see)\s+(me|us|you)\b|\b(audio|mic|mute[d]?|camera|video|screen|zoom|link|connection)\b"
    r"|\b(wait(ing)?|join(s|ed|ing)?|here\s+yet|few\s+more\s+minutes)\b|\b(morning|afternoon|how\s+are\s+you)\b",
    re.IGNORECASE,
)

# Start markers only count near the top of the transcript
_MEETING_START_SEARCH_LIMIT = 40

# Turns this short are greetings or acknowledgements, never substance
_SMALL_TALK_MAX_WORDS = 4


_IN_MEETING_ACTIONS: list[re.Pattern[str]] = [
    re.compile(r"\b(re)?share\s+(my|the)\s+screen\b", re.IGNORECASE),
    re.compile(r"\badmit\s+(them|him|her|everyone|\w+)\b", re.IGNORECASE),
    re.compile(r"\b(send|drop|paste|put)\s+(you\s+)?(the|a)\s+link\b", re.IGNORECASE),
    re.compile(r"\bpull\s+up\s+(the\s+)?(deck|slides?|doc|dashboard)\b", re.IGNORECASE),
    re.compile(r"\bclick\s+through\s+(the\s+)?slides\b", re.IGNORECASE),
]

_CONFIRMATIONS: list[re.Pattern[str]] = [
    re.compile(r"\b(can|do)\s+you\s+(all\s+)?see\s+(it|that|this|my\s+screen)\b", re.IGNORECASE),
    re.compile(r"\bi\s+(can\s+)?see\s+(it|that|your\s+screen)\b", re.IGNORECASE),
    re.compile(r"\b(they're|they\s+are|he's|she's)\s+(in|here)\b", re.IGNORECASE),
    re.compile(r"\bjust\s+(pasted|sent|dropped|shared)\b", re.IGNORECASE),
    re.compile(r"\b(got\s+it|came\s+through|it's\s+up)\b", re.IGNORECASE),
]

_HAND_OFF = re.compile(r"\bhand\s+(it\s+)?(off|over)\s+to\s+(?P<name>[A-Z][a-z]+)")

_SYSTEM_BEHAVIOUR = re.compile(
    r"^\s*(the\s+(system|platform|software|app|dashboard)|it)\s+"
    r"(will\s+)?(automatically\s+)?(provides?|generates?|sends?|creates?|alerts?|notif(y|ies))\b",
    re.IGNORECASE,
)

_OBLIGATION = re.compile(r"\b(need|needs|have|has)\s+to\b|\bmust\b", re.IGNORECASE)
_HEDGED = re.compile(
    r"\b(might|may|maybe|perhaps|possibly|probably|could|someday|eventually|at\s+some\s+point)\b"
    r"|\b(don'?t|doesn'?t|didn'?t|won'?t|not|never|no)\s+(\w+\s+)?(need|needs|have|has)\s+to\b"
    r"|\bmust\s+not\b|\bmustn'?t\b",
    re.IGNORECASE,
)
_OBLIGATION_TYPES = {ActionType.COMMITMENT, ActionType.PLAN, ActionType.REQUEST}

_NON_WORD = re.compile(r"[^a-z0-9' ]+")


def _normalize_text(text: str) -> str:
    return " ".join(_NON_WORD.sub(" ", text.lower()).split())


def detect_meeting_start(chunks: Sequence[TranscriptChunk]) -> int:
    """Position of the turn that opens the substantive meeting (0 if none).

    Only setup chatter may precede the opening. Once a turn with real content
    has been seen, a later greeting is someone arriving, not the start.
    """
    for pos, chunk in enumerate(chunks[:_MEETING_START_SEARCH_LIMIT]):
        text = chunk.text
        if any(p.search(text) for p in _MEETING_START_PATTERNS):
            if _LATE_ARRIVAL.search(text):
                continue
            return pos
        if len(text.split()) > _SMALL_TALK_MAX_WORDS and not _SETUP_CHATTER.search(text):
            return 0
    return 0


def _locate_evidence(evidence: str, chunks: Sequence[TranscriptChunk]) -> int | None:
    """Best-effort position of the turn an evidence quote came from."""
    needle = _normalize_text(evidence)
    if not needle:
        return None

    for pos, chunk in enumerate(chunks):
        if needle in _normalize_text(chunk.text):
            return pos

    # Evidence quotes are cleaned of filler words, so fall back to word overlap
    needle_words = set(needle.split())
    best_pos, best_ratio = None, 0.0
    for pos, chunk in enumerate(chunks):
        words = set(_normalize_text(chunk.text).split())
        ratio = len(needle_words & words) / len(needle_words)
        if ratio > best_ratio:
            best_pos, best_ratio = pos, ratio
    return best_pos if best_ratio >= 0.75 else None


def _resolved_immediately(
    pos: int, chunks: Sequence[TranscriptChunk], window: int
) -> bool:
    """True when an in-meeting action at *pos* is confirmed within *window* turns."""
    text = chunks[pos].text
    following = chunks[pos + 1 : pos + 1 + window]

    hand_off = _HAND_OFF.search(text)
    if hand_off:
        name = hand_off.group("name").lower()
        return any(
            (c.speaker_name or "").lower().startswith(name) for c in following
        )

    if not any(p.search(text) for p in _IN_MEETING_ACTIONS):
        return False
    return any(p.search(c.text) for c in following for p in _CONFIRMATIONS)


def _passes_local_guards(
    item: _ActionItemPayload,
    chunks: Sequence[TranscriptChunk],
    meeting_start: int,
    window: int,
) -> bool:
    if _SYSTEM_BEHAVIOUR.search(item.evidence):
        logger.debug("Dropping system-behaviour item: %s", item.action)
        return False

    pos = _locate_evidence(item.evidence, chunks)
    if pos is None:
        return True
    if pos < meeting_start:
        logger.debug("Dropping pre-meeting item: %s", item.action)
        return False
    if _resolved_immediately(pos, chunks, window):
        logger.debug("Dropping immediately resolved item: %s", item.action)
        return False
    return True


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


def extract_action_items(
    chunks: Sequence[TranscriptChunk],
    leverage_team: Sequence[str] | None = None,
    customer_names: Sequence[str] | None = None,
    config: PipelineConfig | None = None,
    client: Anthropic | None = None,
) -> ActionExtractionResult:
    """Extract two-tier action items from one meeting's transcript chunks.

    Args:
        chunks: Ordered transcript chunks for the meeting.
        leverage_team: Canonical names of our own attendees.
        customer_names: Canonical names of the customer's attendees.
        config: Confidence thresholds; defaults to :class:`PipelineConfig`.
        client: Optional Anthropic client (a new one is created if omitted).

    Returns:
        An :class:`ActionExtractionResult` with primary and secondary items.

    Raises:
        ExtractionError: If the response is empty, refused or malformed.
    """
    config = config or PipelineConfig()
    canonical_names = build_canonical_attendees(leverage_team, customer_names)
    transcript = format_transcript(chunks)

    attendee_block = ""
    if canonical_names:
        attendee_block = (
            "CANONICAL ATTENDEES (normalize owner names to these exact spellings):\n"
            f"{', '.join(canonical_names)}\n\n"
        )

    client = client or Anthropic(
        api_key=settings.anthropic_api_key, timeout=settings.llm_timeout_seconds
    )
    response = client.messages.create(
        model=settings.extraction_model,
        max_tokens=4096,
        temperature=0,
        system=SYSTEM_PROMPT,
        tools=[EXTRACTION_TOOL],
        tool_choice={"type": "tool", "name": "store_action_items"},
        messages=[
            {
                "role": "user",
                "content": (
                    "Extract and consolidate action items from this meeting transcript.\n\n"
                    f"{attendee_block}Transcript:\n{transcript}"
                ),
            }
        ],
    )

    payloads = _parse_tool_response(response)
    result = _finalize(payloads, chunks, canonical_names, config)
    logger.info(
        "Extracted %d primary / %d secondary action items from %d chunks",
        len(result.primary),
        len(result.secondary),
        len(chunks),
    )
    return result


def _parse_tool_response(response: Any) -> list[_ActionItemPayload]:
    """Parse the Claude tool_use response into validated payload items."""
    if getattr(response, "stop_reason", None) == "refusal":
        raise ExtractionError("Model refused the action item extraction request")

    for block in response.content or []:
        if block.type != "tool_use":
            continue
        if block.name != "store_action_items":
            continue

        data = block.input
        try:
            if isinstance(data, str):
                data = json.loads(data)
            return _ExtractionPayload.model_validate(data).action_items
        except (json.JSONDecodeError, ValidationError) as exc:
            raise ExtractionError(f"Malformed action item payload: {exc}") from exc

    raise ExtractionError("Extraction response did not contain a store_action_items call")


def _finalize(
    payloads: list[_ActionItemPayload],
    chunks: Sequence[TranscriptChunk],
    canonical_names: list[str],
    config: PipelineConfig,
) -> ActionExtractionResult:
    """Apply local guards, normalization and confidence bucketing."""
    meeting_start = detect_meeting_start(chunks)
    result = ActionExtractionResult()

    for payload in payloads:
        if not _passes_local_guards(payload, chunks, meeting_start, config.resolution_window_turns):
            continue

        confidence = payload.confidence
        # Unhedged obligations already in the secondary tier are lifted to primary
        if (
            confidence >= config.secondary_threshold
            and payload.type in _OBLIGATION_TYPES
            and _OBLIGATION.search(payload.evidence)
            and not _HEDGED.search(payload.evidence)
        ):
            confidence = max(confidence, config.primary_threshold)

        item = ActionItem(
            action=payload.action.strip(),
            owner=normalize_owner_name(payload.owner, canonical_names),
            type=payload.type,
            deadline=normalize_deadline(payload.deadline),
            evidence=payload.evidence.strip(),
            confidence=confidence,
        )

        tier = config.tier_for(item.confidence)
        if tier is ConfidenceTier.PRIMARY:
            result.primary.append(item)
        elif tier is ConfidenceTier.SECONDARY:
            result.secondary.append(item)

    return result
