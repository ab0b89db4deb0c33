"""Built-in capabilities: company overview, meeting attendees, meeting next steps."""

from __future__ import annotations

from pydantic import BaseModel, Field

from src.extraction.extractor import NOT_SPECIFIED, extract_action_items
from src.extraction.models import ActionItem
from src.lookup.companies import resolve_company_name
from src.lookup.models import EntityRef, MeetingRecord
from src.resolution.temporal import format_meeting_date
from src.routing.models import CapabilityResult, ResolvedEntities
from src.routing.registry import Capability, CapabilityContext, CapabilityRegistry

ASK_FOR_MEETING = (
    "Which meeting do you mean? Mention the company (and a date if there were "
    "several meetings) so I can find it."
)


class CompanyArgs(BaseModel):
    company_id: str | None = Field(default=None, description="Company id, if known.")
    company_name: str | None = Field(default=None, description="Company name as mentioned.")


class MeetingArgs(BaseModel):
    meeting_id: str | None = Field(default=None, description="Meeting id, if known.")
    company_id: str | None = Field(default=None, description="Company id, if known.")


def _meeting_label(meeting: MeetingRecord) -> str:
    label = meeting.name or f"the {meeting.company_name or 'customer'} meeting"
    return f"{label} ({format_meeting_date(meeting.meeting_at)})"


class CompanyOverview(Capability):
    name = "get_company_overview"
    description = "Summarize a customer company: how many meetings we've had and the latest one."
    args_model = CompanyArgs

    def handle(self, ctx: CapabilityContext, args: CompanyArgs) -> CapabilityResult:
        company: EntityRef | None = None
        if args.company_id:
            company = ctx.store.get_company(args.company_id)
        if company is None and args.company_name:
            company = resolve_company_name(args.company_name, ctx.store)
        if company is None:
            return CapabilityResult(answer="Which company are you asking about?")

        total = ctx.store.count_meetings(company.id)
        latest = ctx.store.meetings_on_most_recent_date(company.id)
        lines = [f"*{company.display_name}*: {total} meeting{'s' if total != 1 else ''} on record."]
        if latest:
            lines.append(f"Most recent: {', '.join(_meeting_label(m) for m in latest)}.")

        entities = ResolvedEntities(company_id=company.id)
        offer = None
        if len(latest) == 1:
            lines.append("Want the next steps from that meeting?")
            entities.meeting_id = latest[0].id
            offer = MeetingActionItems.name

        return CapabilityResult(answer="\n".join(lines), resolved_entities=entities, offer=offer)



class MeetingAttendees(Capability):
    name = "get_meeting_attendees"
    description = "List who attended a specific meeting, split into our team and the customer."
    args_model = MeetingArgs

    def handle(self, ctx: CapabilityContext, args: MeetingArgs) -> CapabilityResult:
        meeting = ctx.store.get_meeting(args.meeting_id) if args.meeting_id else None
        if meeting is None:
            return CapabilityResult(answer=ASK_FOR_MEETING)

        lines = [f"Attendees for {_meeting_label(meeting)}:"]
        lines.append(f"• Our team: {', '.join(meeting.leverage_team) or 'not recorded'}")
        lines.append(f"• Customer: {', '.join(meeting.customer_names) or 'not recorded'}")

        return CapabilityResult(
            answer="\n".join(lines),
            resolved_entities=ResolvedEntities(
                company_id=meeting.company_id,
                meeting_id=meeting.id,
                people=meeting.attendees,
            ),
        )


def format_action_item(item: ActionItem) -> str:
    detail = item.owner
    if item.deadline != NOT_SPECIFIED:
        detail += f", due {item.deadline}"
    line = f"• {item.action} ({detail})"
    if item.evidence:
        line += f'\n  _"{item.evidence}"_'
    return line


class MeetingActionItems(Capability):
    name = "get_meeting_action_items"
    description = "Extract the next steps and action items from a specific meeting's transcript."
    args_model = MeetingArgs

    def handle(self, ctx: CapabilityContext, args: MeetingArgs) -> CapabilityResult:
        meeting = ctx.store.get_meeting(args.meeting_id) if args.meeting_id else None
        if meeting is None:
            return CapabilityResult(answer=ASK_FOR_MEETING)

        entities = ResolvedEntities(company_id=meeting.company_id, meeting_id=meeting.id)
        chunks = ctx.store.get_transcript_chunks(meeting.id)
        if not chunks:
            return CapabilityResult(
                answer=f"I don't have a transcript for {_meeting_label(meeting)} yet.",
                resolved_entities=entities,
            )

        result = extract_action_items(
            chunks,
            leverage_team=meeting.leverage_team,
            customer_names=meeting.customer_names,
            config=ctx.config,
        )
        if not result.all_items:
            return CapabilityResult(
                answer=f"I didn't find any clear next steps in {_meeting_label(meeting)}.",
                resolved_entities=entities,
            )

        lines = [f"*Next steps from {_meeting_label(meeting)}:*"]
        lines.extend(format_action_item(i) for i in result.primary)
        if result.secondary:
            lines.append("\n_Possible follow-ups (lower confidence):_")
            lines.extend(format_action_item(i) for i in result.secondary)

        return CapabilityResult(answer="\n".join(lines), resolved_entities=entities)


def default_registry() -> CapabilityRegistry:
    return CapabilityRegistry([CompanyOverview(), MeetingAttendees(), MeetingActionItems()])
