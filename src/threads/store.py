"""Thread interaction log: the only memory the assistant keeps between turns.

Each handled message leaves one row in ``interaction_logs`` holding the ids
it resolved plus a little clarification state. Prior answers are never read
back as context.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, cast

from supabase import Client

from src.lookup.store import get_supabase_client

logger = logging.getLogger(__name__)

_TABLE = "interaction_logs"


@dataclass
class InteractionRecord:
    """One handled message in a thread."""

    thread_id: str
    question_text: str
    meeting_id: str | None = None
    company_id: str | None = None
    capability_name: str | None = None
    resolution: dict[str, Any] = field(default_factory=dict)
    context_layers: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None


class ThreadStore(Protocol):
    def get_last_interaction(self, thread_id: str) -> InteractionRecord | None: ...

    def record_interaction(self, record: InteractionRecord) -> None: ...


def _to_record(row: dict[str, Any]) -> InteractionRecord:
    created = row.get("created_at")
    return InteractionRecord(
        thread_id=str(row["thread_id"]),
        question_text=str(row.get("question_text") or ""),
        meeting_id=row.get("meeting_id"),
        company_id=row.get("company_id"),
        capability_name=row.get("capability_name"),
        resolution=row.get("resolution") or {},
        context_layers=row.get("context_layers") or {},
        created_at=datetime.fromisoformat(created) if isinstance(created, str) else None,
    )


class SupabaseThreadStore:
    """ThreadStore backed by the ``interaction_logs`` table."""

    def __init__(self, client: Client | None = None) -> None:
        self._client = client or get_supabase_client()

    def get_last_interaction(self, thread_id: str) -> InteractionRecord | None:
        result = (
            self._client.table(_TABLE)
            .select("*")
            .eq("thread_id", thread_id)
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )
        rows = cast(list[dict[str, Any]], result.data)
        return _to_record(rows[0]) if rows else None

    def record_interaction(self, record: InteractionRecord) -> None:
        self._client.table(_TABLE).insert(
            {
                "thread_id": record.thread_id,
                "question_text": record.question_text,
                "meeting_id": record.meeting_id,
                "company_id": record.company_id,
                "capability_name": record.capability_name,
                "resolution": record.resolution,
                "context_layers": record.context_layers,
            }
        ).execute()
        logger.debug("Recorded interaction for thread %s", record.thread_id)
