"""Meeting-reference detection: regex fast path, LLM yes/no fallback."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from openai import OpenAI, OpenAIError

from src.config import settings
from src.resolution.temporal import has_temporal_meeting_reference

logger = logging.getLogger(__name__)

CLASSIFIER_PROMPT = """\
You are a classifier.

Task:
Does this question clearly refer to a specific meeting instance
(e.g. a call, visit, demo, sync, conversation, or other concrete interaction),
rather than a general account-level or relationship question?

Answer ONLY one word:
YES or NO"""


@dataclass(frozen=True)
class MeetingReferenceDetection:
    has_meeting_ref: bool
    regex_result: bool
    llm_called: bool = False
    llm_result: bool | None = None
    llm_latency_ms: int | None = None


def classify_meeting_reference(question: str, client: OpenAI | None = None) -> bool:
    """Ask the classifier model whether *question* names a concrete meeting.

    Any API failure is logged and treated as "no".
    """
    client = client or OpenAI(
        api_key=settings.openai_api_key, timeout=settings.llm_timeout_seconds
    )
    try:
        response = client.chat.completions.create(
            model=settings.classifier_model,
            messages=[
                {"role": "system", "content": CLASSIFIER_PROMPT},
                {"role": "user", "content": question},
            ],
            temperature=0,
            max_tokens=5,
        )
    except OpenAIError:
        logger.exception("Meeting reference classifier failed")
        return False

    content = response.choices[0].message.content if response.choices else None
    return (content or "").strip().upper() == "YES"


def detect_meeting_reference(
    message: str, client: OpenAI | None = None
) -> MeetingReferenceDetection:
    if has_temporal_meeting_reference(message):
        logger.debug("Meeting reference detected via regex: %.40s", message)
        return MeetingReferenceDetection(has_meeting_ref=True, regex_result=True)

    started = time.monotonic()
    llm_result = classify_meeting_reference(message, client=client)
    latency_ms = int((time.monotonic() - started) * 1000)

    logger.info(
        "Meeting reference detection: regex=False llm=%s latency=%dms",
        llm_result,
        latency_ms,
    )
    return MeetingReferenceDetection(
        has_meeting_ref=llm_result,
        regex_result=False,
        llm_called=True,
        llm_result=llm_result,
        llm_latency_ms=latency_ms,
    )
