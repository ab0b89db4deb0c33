"""Read-only Supabase lookups for companies, meetings and transcript chunks.

All queries go through the PostgREST query builder, which parameterizes
values for us. Nothing in this module writes to the entity store.

Meetings are read from the ``meeting_timeline`` view, which exposes the
effective meeting time (``COALESCE(meeting_date, created_at)``) as
``meeting_at`` together with the owning company's name.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from datetime import datetime
from enum import StrEnum
from typing import Any, Protocol, cast

from postgrest import CountMethod
from supabase import Client, create_client

from src.config import settings
from src.extraction.models import SpeakerRole, TranscriptChunk
from src.lookup.models import EntityRef, MeetingRecord

_MEETING_COLUMNS = (
    "id,company_id,company_name,name,meeting_at,leverage_team,customer_names"
)

# Upper bound on meetings fetched when looking for same-day ties
_RECENT_MEETINGS_WINDOW = 25


class MatchMode(StrEnum):
    """How a candidate company name is compared against stored names."""

    EXACT = "exact"
    PREFIX = "prefix"
    WORD_BOUNDARY = "word_boundary"


class EntityStore(Protocol):
    """Read-only entity store capability used by the resolver."""

    def list_companies(self) -> list[EntityRef]: ...

    def get_company(self, company_id: str) -> EntityRef | None: ...

    def find_companies(self, name: str, mode: MatchMode) -> list[EntityRef]: ...

    def get_meeting(self, meeting_id: str) -> MeetingRecord | None: ...

    def meetings_in_range(
        self, company_id: str, start: datetime, end: datetime
    ) -> list[MeetingRecord]: ...

    def meetings_on_most_recent_date(self, company_id: str) -> list[MeetingRecord]: ...

    def count_meetings(self, company_id: str) -> int: ...

    def get_transcript_chunks(self, meeting_id: str) -> list[TranscriptChunk]: ...


def get_supabase_client() -> Client:
    """Client for the configured project; both threads and entities share it."""
    return create_client(settings.supabase_url, settings.supabase_key)


def split_names(raw: str | None) -> list[str]:
    """Split a stored attendee string (pipe- or comma-delimited) into names."""
    if not raw:
        return []
    return [n.strip() for n in re.split(r"[|,]", raw) if n.strip()]


def _escape_like(value: str) -> str:
    """Escape LIKE wildcards so user text is matched literally."""
    return value.replace("\\", "\\\\").replace("%", r"\%").replace("_", r"\_")


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _to_meeting(row: dict[str, Any]) -> MeetingRecord:
    return MeetingRecord(
        id=str(row["id"]),
        company_id=row.get("company_id"),
        company_name=row.get("company_name"),
        name=row.get("name"),
        meeting_at=_parse_timestamp(row["meeting_at"]),
        leverage_team=split_names(row.get("leverage_team")),
        customer_names=split_names(row.get("customer_names")),
    )


def _to_company(row: dict[str, Any]) -> EntityRef:
    return EntityRef(id=str(row["id"]), display_name=str(row["name"]))


class SupabaseEntityStore:
    """EntityStore backed by a Supabase project."""

    def __init__(self, client: Client | None = None) -> None:
        self._client = client or get_supabase_client()

    def _rows(self, query: Any) -> list[dict[str, Any]]:
        # Supabase .data is typed as JSON (broad union); cast to concrete type.
        return cast(list[dict[str, Any]], query.execute().data)

    # -- companies ---------------------------------------------------------

    def list_companies(self) -> list[EntityRef]:
        rows = self._rows(self._client.table("companies").select("id,name").order("name"))
        return [_to_company(r) for r in rows]

    def get_company(self, company_id: str) -> EntityRef | None:
        rows = self._rows(
            self._client.table("companies").select("id,name").eq("id", company_id)
        )
        return _to_company(rows[0]) if rows else None

    def find_companies(self, name: str, mode: MatchMode) -> list[EntityRef]:
        escaped = _escape_like(name.strip())
        query = self._client.table("companies").select("id,name")

        if mode is MatchMode.EXACT:
            query = query.ilike("name", escaped)
        elif mode is MatchMode.PREFIX:
            query = query.ilike("name", f"{escaped}%")
        else:
            # Leading word, any later word, or a parenthetical alias
            patterns = [f"{escaped} %", f"% {escaped}%", f"%({escaped})%", f"%({escaped} %"]
            query = query.or_(",".join(f'name.ilike."{p}"' for p in patterns))

        return [_to_company(r) for r in self._rows(query.order("name"))]

    # -- meetings ----------------------------------------------------------

    def get_meeting(self, meeting_id: str) -> MeetingRecord | None:
        rows = self._rows(
            self._client.table("meeting_timeline").select(_MEETING_COLUMNS).eq("id", meeting_id)
        )
        return _to_meeting(rows[0]) if rows else None

    def meetings_in_range(
        self, company_id: str, start: datetime, end: datetime
    ) -> list[MeetingRecord]:
        rows = self._rows(
            self._client.table("meeting_timeline")
            .select(_MEETING_COLUMNS)
            .eq("company_id", company_id)
            .gte("meeting_at", start.isoformat())
            .lte("meeting_at", end.isoformat())
            .order("meeting_at", desc=True)
        )
        return [_to_meeting(r) for r in rows]

    def meetings_on_most_recent_date(self, company_id: str) -> list[MeetingRecord]:
        """Return every meeting sharing the newest meeting's calendar date.

        One round trip: the newest meetings are fetched and the same-day
        ties are picked out locally.
        """
        rows = self._rows(
            self._client.table("meeting_timeline")
            .select(_MEETING_COLUMNS)
            .eq("company_id", company_id)
            .order("meeting_at", desc=True)
            .limit(_RECENT_MEETINGS_WINDOW)
        )
        return latest_day(_to_meeting(r) for r in rows)

    def count_meetings(self, company_id: str) -> int:
        result = (
            self._client.table("meeting_timeline")
            .select("id", count=CountMethod.exact)
            .eq("company_id", company_id)
            .execute()
        )
        return result.count or 0

    def get_transcript_chunks(self, meeting_id: str) -> list[TranscriptChunk]:
        rows = self._rows(
            self._client.table("transcript_chunks")
            .select("chunk_index,speaker_role,speaker_name,content")
            .eq("transcript_id", meeting_id)
            .order("chunk_index")
        )
        return [
            TranscriptChunk(
                chunk_index=int(r["chunk_index"]),
                speaker_role=SpeakerRole.coerce(r.get("speaker_role")),
                speaker_name=r.get("speaker_name"),
                text=str(r.get("content") or ""),
            )
            for r in rows
        ]


def latest_day(meetings: Iterable[MeetingRecord]) -> list[MeetingRecord]:
    """Keep the meetings that fall on the same calendar day as the newest one."""
    ordered = sorted(meetings, key=lambda m: m.meeting_at, reverse=True)
    if not ordered:
        return []
    newest = ordered[0].meeting_at.date()
    return [m for m in ordered if m.meeting_at.date() == newest]
