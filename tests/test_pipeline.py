"""End-to-end tests for message handling with fake stores and mocked models."""

from __future__ import annotations

import asyncio
from datetime import datetime
from unittest.mock import MagicMock, patch

from fakes import (
    ACE,
    ACME,
    FakeEntityStore,
    FakeThreadStore,
    meeting,
    text_response,
    tool_use_response,
)
from src.assistant.pipeline import (
    AssistantDeps,
    AssistantReply,
    InboundMessage,
    build_interaction_record,
    handle_message,
)
from src.extraction.models import (
    ActionExtractionResult,
    ActionItem,
    ActionType,
    SpeakerRole,
    TranscriptChunk,
)
from src.resolution.models import MeetingOption, NeedsClarification, Resolved
from src.routing.models import ResolvedEntities
from src.routing.router import DEFAULT_FALLBACK
from src.threads.progress import ProgressRegistry
from src.threads.store import InteractionRecord

CHUNKS = [TranscriptChunk(0, SpeakerRole.LEVERAGE, "I'll send the pricing sheet.", "Sam Lee")]

EXTRACTED = ActionExtractionResult(
    primary=[
        ActionItem(
            "Send the pricing sheet", "Sam Lee", ActionType.COMMITMENT,
            "Not specified", "I'll send the pricing sheet", 0.95,
        )
    ]
)


def _classifier(answer: str = "NO") -> MagicMock:
    client = MagicMock()
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = answer
    client.chat.completions.create.return_value = response
    return client


def _router(response: MagicMock) -> MagicMock:
    client = MagicMock()
    client.messages.create.return_value = response
    return client


def _deps(store: FakeEntityStore, router_response: MagicMock, **kwargs) -> AssistantDeps:
    kwargs.setdefault("thread_store", FakeThreadStore())
    kwargs.setdefault("openai_client", _classifier())
    return AssistantDeps(store=store, anthropic_client=_router(router_response), **kwargs)


def _ace_store(*extra) -> FakeEntityStore:
    return FakeEntityStore(
        companies=[ACE],
        meetings=[
            meeting("m-old", ACE, datetime(2025, 8, 1), name="Kickoff"),
            meeting("m-new", ACE, datetime(2025, 9, 30, 10), name="Weekly sync", team=["Sam Lee"]),
            *extra,
        ],
        chunks={"m-new": CHUNKS},
    )


class TestHandleMessage:
    @patch("src.routing.capabilities.extract_action_items", return_value=EXTRACTED)
    def test_ace_call_next_steps(self, mock_extract: MagicMock) -> None:
        deps = _deps(_ace_store(), tool_use_response("get_meeting_action_items", {}))

        reply = asyncio.run(
            handle_message(InboundMessage("What are the next steps from the ACE call?"), deps)
        )

        assert isinstance(reply.resolution, Resolved)
        assert reply.resolution.was_auto_selected
        assert reply.capability_name == "get_meeting_action_items"
        assert reply.text.startswith("_Using the most recent ACE Corp meeting (Sep 30, 2025)._")
        assert "• Send the pricing sheet (Sam Lee)" in reply.text
        assert reply.resolved_entities.meeting_id == "m-new"
        assert reply.company_name == "ACE Corp"
        mock_extract.assert_called_once()

    @patch("src.routing.capabilities.extract_action_items")
    def test_ambiguity_short_circuits(self, mock_extract: MagicMock) -> None:
        store = _ace_store(meeting("m-new-2", ACE, datetime(2025, 9, 30, 15), name="Pricing"))
        deps = _deps(store, tool_use_response("get_meeting_action_items", {}))

        reply = asyncio.run(handle_message(InboundMessage("last ACE call action items"), deps))

        assert reply.needs_clarification
        assert {o.meeting_id for o in reply.options} == {"m-new", "m-new-2"}
        assert reply.capability_name is None
        mock_extract.assert_not_called()

    def test_yes_reuses_thread_context_without_classifier(self) -> None:
        thread_store = FakeThreadStore(
            [
                InteractionRecord(
                    thread_id="t1",
                    question_text="who attended the ACE call?",
                    meeting_id="m-old",
                    company_id=ACE.id,
                    resolution={"company_name": "ACE Corp"},
                )
            ]
        )
        classifier = _classifier("YES")
        deps = _deps(
            _ace_store(),
            tool_use_response("get_meeting_attendees", {}),
            thread_store=thread_store,
            openai_client=classifier,
        )

        reply = asyncio.run(
            handle_message(InboundMessage("yes", thread_id="t1", is_reply=True), deps)
        )

        assert isinstance(reply.resolution, Resolved)
        assert reply.resolution.meeting_id == "m-old"
        assert not reply.resolution.was_auto_selected
        assert "Kickoff" in reply.text
        assert reply.resolved_entities.meeting_id == "m-old"
        classifier.chat.completions.create.assert_not_called()

    def test_named_company_beats_thread_company(self) -> None:
        store = _ace_store(meeting("m-acme", ACME, datetime(2025, 9, 20), name="Acme QBR"))
        store.companies.append(ACME)
        thread_store = FakeThreadStore(
            [
                InteractionRecord(
                    thread_id="t1",
                    question_text="how is ACE doing?",
                    company_id=ACE.id,
                    resolution={"company_id": ACE.id, "company_name": "ACE Corp"},
                )
            ]
        )
        deps = _deps(store, tool_use_response("get_meeting_attendees", {}), thread_store=thread_store)

        reply = asyncio.run(
            handle_message(
                InboundMessage(
                    "what happened in the last meeting for Acme Logistics",
                    thread_id="t1",
                    is_reply=True,
                ),
                deps,
            )
        )

        assert isinstance(reply.resolution, Resolved)
        assert reply.resolution.meeting_id == "m-acme"
        assert reply.company_name == "Acme Logistics"
        assert reply.resolved_entities.company_id == ACME.id

    def test_router_fallback_keeps_resolved_ids(self) -> None:

        deps = _deps(_ace_store(), text_response("ACE is a fleet services customer."))

        reply = asyncio.run(handle_message(InboundMessage("tell me a joke about ACE"), deps))

        assert reply.text == "ACE is a fleet services customer."
        assert reply.capability_name is None
        assert reply.resolved_entities == ResolvedEntities(company_id=ACE.id, meeting_id="m-new")

    def test_invalid_capability_arguments_fall_back(self) -> None:
        deps = _deps(_ace_store(), tool_use_response("get_company_overview", {"company_id": ["x"]}))

        reply = asyncio.run(handle_message(InboundMessage("how is ACE doing?"), deps))

        assert reply.text == DEFAULT_FALLBACK
        assert reply.capability_name is None

    def test_unresolved_message_still_routes(self) -> None:
        deps = _deps(FakeEntityStore(), text_response("I can help with meetings."))
        reply = asyncio.run(handle_message(InboundMessage("hello"), deps))

        assert reply.text == "I can help with meetings."
        assert reply.resolved_entities == ResolvedEntities()

    def test_progress_notices_stop_before_reply(self) -> None:
        class Recorder:
            def __init__(self) -> None:
                self.sent: list[str] = []

            async def send(self, thread_id: str, text: str) -> None:
                self.sent.append(text)

        notifier = Recorder()
        registry = ProgressRegistry()
        deps = _deps(
            _ace_store(),
            text_response("ok"),
            notifier=notifier,
            progress=registry,
        )

        reply = asyncio.run(handle_message(InboundMessage("hi", thread_id="t9"), deps))

        assert reply.text == "ok"
        assert len(registry) == 0
        assert notifier.sent == []


# ---------------------------------------------------------------------------
# Follow-up replies: numbered choices and accepted offers
# ---------------------------------------------------------------------------


def _send(
    deps: AssistantDeps, text: str, is_reply: bool = True, now_ms: int | None = None
) -> AssistantReply:
    """Handle a message in thread t1 and log it the way the API does."""
    message = InboundMessage(text, thread_id="t1", is_reply=is_reply)
    reply = asyncio.run(handle_message(message, deps))
    deps.thread_store.record_interaction(build_interaction_record(message, reply, now_ms=now_ms))
    return reply


class TestFollowUps:
    def _tied_store(self) -> FakeEntityStore:
        return _ace_store(meeting("m-new-2", ACE, datetime(2025, 9, 30, 15), name="Pricing"))

    @patch("src.routing.capabilities.extract_action_items", return_value=EXTRACTED)
    def test_numbered_reply_finishes_original_request(self, mock_extract: MagicMock) -> None:
        deps = _deps(self._tied_store(), tool_use_response("get_meeting_action_items", {}))

        asked = _send(deps, "last ACE call action items", is_reply=False)
        assert asked.needs_clarification
        assert [o.meeting_id for o in asked.options] == ["m-new-2", "m-new"]
        mock_extract.assert_not_called()

        reply = _send(deps, "2")

        assert isinstance(reply.resolution, Resolved)
        assert reply.resolution.meeting_id == "m-new"
        assert reply.capability_name == "get_meeting_action_items"
        assert "• Send the pricing sheet (Sam Lee)" in reply.text
        assert reply.resolved_entities == ResolvedEntities(company_id=ACE.id, meeting_id="m-new")
        mock_extract.assert_called_once()
        # the stored routing decision is reused, not re-derived from "2"
        deps.anthropic_client.messages.create.assert_called_once()

    def test_ordinal_reply_without_stored_call_routes_original_question(self) -> None:
        deps = _deps(self._tied_store(), text_response("Which meeting?"))
        _send(deps, "last ACE call", is_reply=False)
        deps.anthropic_client.messages.create.return_value = tool_use_response(
            "get_meeting_attendees", {}
        )

        reply = _send(deps, "the first one")

        assert reply.capability_name == "get_meeting_attendees"
        assert reply.resolved_entities.meeting_id == "m-new-2"
        routed = deps.anthropic_client.messages.create.call_args.kwargs["messages"]
        assert routed[0]["content"] == "last ACE call"

    def test_out_of_range_number_asks_again(self) -> None:
        deps = _deps(self._tied_store(), tool_use_response("get_meeting_action_items", {}))
        _send(deps, "last ACE call action items", is_reply=False)

        reply = _send(deps, "5")

        assert reply.needs_clarification
        assert reply.text == "Please reply with a number between 1 and 2."
        assert len(reply.options) == 2
        assert reply.proposed_interpretation == {
            "capability_name": "get_meeting_action_items",
            "arguments": {},
        }
        assert deps.thread_store.records[-1].context_layers["awaiting_clarification"] == "meeting"

    @patch("src.routing.capabilities.extract_action_items", return_value=EXTRACTED)
    def test_yes_accepts_pending_offer(self, mock_extract: MagicMock) -> None:
        deps = _deps(_ace_store(), tool_use_response("get_company_overview", {}))

        overview = _send(deps, "how is ACE doing?", is_reply=False)
        assert overview.capability_name == "get_company_overview"
        assert overview.pending_offer == "get_meeting_action_items"
        deps.anthropic_client.messages.create.reset_mock()

        reply = _send(deps, "yes please")

        assert reply.capability_name == "get_meeting_action_items"
        assert "• Send the pricing sheet (Sam Lee)" in reply.text
        assert reply.resolved_entities.meeting_id == "m-new"
        mock_extract.assert_called_once()
        deps.anthropic_client.messages.create.assert_not_called()

    @patch("src.routing.capabilities.extract_action_items", return_value=EXTRACTED)
    def test_expired_offer_is_routed_normally(self, mock_extract: MagicMock) -> None:
        deps = _deps(_ace_store(), tool_use_response("get_company_overview", {}))
        _send(deps, "how is ACE doing?", is_reply=False, now_ms=0)

        reply = _send(deps, "yes")

        assert reply.capability_name == "get_company_overview"
        mock_extract.assert_not_called()



class TestBuildInteractionRecord:
    def test_resolved_reply(self) -> None:
        reply = AssistantReply(
            text="...",
            capability_name="get_meeting_attendees",
            resolution=Resolved("m1", ACE.id, "ACE Corp"),
            resolved_entities=ResolvedEntities(company_id=ACE.id, meeting_id="m1"),
            company_name="ACE Corp",
        )
        record = build_interaction_record(InboundMessage("who?", thread_id="t1"), reply)

        assert record.thread_id == "t1"
        assert record.meeting_id == "m1"
        assert record.resolution == {"meeting_id": "m1", "company_id": ACE.id, "company_name": "ACE Corp"}
        assert record.context_layers == {"last_response_type": "get_meeting_attendees"}

    def test_clarification_marks_awaiting(self) -> None:
        reply = AssistantReply(text="Which one?", resolution=NeedsClarification("Which one?"))
        record = build_interaction_record(InboundMessage("last ACE call", thread_id="t1"), reply)

        assert record.context_layers["awaiting_clarification"] == "meeting"
        assert record.meeting_id is None

    def test_clarification_stores_options_and_proposed_call(self) -> None:
        options = [
            MeetingOption("m2", datetime(2025, 9, 30, 15), "ACE Corp", "Pricing", ACE.id),
            MeetingOption("m1", datetime(2025, 9, 30, 10), "ACE Corp", None, ACE.id),
        ]
        reply = AssistantReply(
            text="Which one?",
            options=options,
            resolution=NeedsClarification("Which one?", options),
            resolved_entities=ResolvedEntities(company_id=ACE.id),
            company_name="ACE Corp",
            proposed_interpretation={"capability_name": "get_meeting_attendees", "arguments": {}},
        )
        record = build_interaction_record(InboundMessage("last ACE call", thread_id="t1"), reply)

        assert record.company_id == ACE.id
        assert record.resolution["options"][0] == {
            "meeting_id": "m2",
            "date": "2025-09-30T15:00:00",
            "company_id": ACE.id,
            "company_name": "ACE Corp",
            "name": "Pricing",
        }
        assert record.context_layers["proposed_interpretation"]["capability_name"] == (
            "get_meeting_attendees"
        )

    def test_offer_is_stamped(self) -> None:
        reply = AssistantReply(
            text="Want the next steps from that meeting?",
            capability_name="get_company_overview",
            resolved_entities=ResolvedEntities(company_id=ACE.id, meeting_id="m1"),
            pending_offer="get_meeting_action_items",
        )
        message = InboundMessage("how is ACE?", thread_id="t1")
        record = build_interaction_record(message, reply, now_ms=1234)

        assert record.resolution["pending_offer"] == "get_meeting_action_items"
        assert record.resolution["offer_timestamp"] == 1234
