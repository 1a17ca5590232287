"""Tests for webhook parsing and how provider events change state."""

import pytest
import pytest_asyncio

from app.repositories import CallRepository, ClientRepository, LeadRepository
from app.schemas.call import Call
from app.schemas.common import CallOutcome, CallStatus, LeadStatus, QueueStatus
from app.schemas.queue import QueueItemCreate
from app.schemas.webhook import (
    CallAnalyzed,
    CallAnswered,
    CallEnded,
    CallFailed,
    UnknownEvent,
)
from app.services.call_outcome_mapper import (
    CallOutcomeMapper,
    determine_outcome,
    parse_provider_event,
)

CLIENT = "client-1"
PROVIDER_CALL_ID = "call-abc"


class TestParseProviderEvent:
    """Raw webhook bodies become exactly one event type."""

    def test_nested_ended_event(self):
        event = parse_provider_event(
            {
                "event": "call_ended",
                "call": {
                    "call_id": "c1",
                    "duration_ms": 95_000,
                    "transcript": "Hello",
                    "recording_url": "https://rec.example/c1.wav",
                    "disconnection_reason": "user_hangup",
                },
            }
        )
        assert isinstance(event, CallEnded)
        assert event.call_id == "c1"
        assert event.duration == 95
        assert event.recording_url == "https://rec.example/c1.wav"
        assert event.disconnection_reason == "user_hangup"

    def test_flat_body_with_event_type(self):
        event = parse_provider_event({"event_type": "call.started", "call_id": "c2"})
        assert isinstance(event, CallAnswered)
        assert event.call_id == "c2"

    def test_event_names_are_case_insensitive(self):
        event = parse_provider_event({"event": "CALL_ANSWERED", "call_id": "c3"})
        assert isinstance(event, CallAnswered)

    def test_failed_event(self):
        event = parse_provider_event(
            {"event": "call_failed", "call": {"call_id": "c4", "error": "carrier rejected"}}
        )
        assert isinstance(event, CallFailed)
        assert event.reason == "carrier rejected"

    def test_analyzed_event(self):
        event = parse_provider_event(
            {
                "event": "call_analyzed",
                "call": {
                    "call_id": "c5",
                    "call_analysis": {
                        "call_summary": "Wants a viewing on Friday",
                        "user_sentiment": "Positive",
                    },
                },
            }
        )
        assert isinstance(event, CallAnalyzed)
        assert event.summary == "Wants a viewing on Friday"
        assert event.sentiment == "Positive"

    @pytest.mark.parametrize(
        "payload",
        [
            {"event": "call_transferred", "call": {"call_id": "c6"}},
            {"event": "call_ended", "call": {}},
            {"call": {"call_id": "c7"}},
            ["not", "an", "object"],
            None,
        ],
    )
    def test_unrecognised_payloads(self, payload):
        assert isinstance(parse_provider_event(payload), UnknownEvent)

    def test_analysis_that_is_not_an_object_is_ignored(self):
        event = parse_provider_event(
            {"event": "call_analyzed", "call": {"call_id": "c1", "call_analysis": "oops"}}
        )
        assert isinstance(event, CallAnalyzed)
        assert event.summary is None
        assert event.sentiment is None

    def test_non_string_ended_fields_are_dropped(self):
        event = parse_provider_event(
            {
                "event": "call_ended",
                "call": {
                    "call_id": "c1",
                    "recording_url": 5,
                    "disconnection_reason": {"code": 1},
                    "transcript": 42,
                },
            }
        )
        assert isinstance(event, CallEnded)
        assert event.recording_url is None
        assert event.disconnection_reason is None
        assert event.transcript is None

    def test_utterance_list_transcript_is_flattened(self):
        event = parse_provider_event(
            {
                "event": "call_ended",
                "call": {
                    "call_id": "c1",
                    "transcript": [
                        {"role": "agent", "content": "Hi, is this Sam?"},
                        {"role": "user", "content": "Yes"},
                        {"role": "user", "words": []},
                        "noise",
                    ],
                },
            }
        )
        assert event.transcript == "agent: Hi, is this Sam?\nuser: Yes"

    def test_transcript_object_used_when_no_text(self):
        event = parse_provider_event(
            {
                "event": "call_ended",
                "call": {
                    "call_id": "c1",
                    "transcript_object": [{"role": "agent", "content": "Hello"}],
                },
            }
        )
        assert event.transcript == "agent: Hello"


class TestDetermineOutcome:
    """Classifying ended calls."""

    @pytest.mark.parametrize(
        "duration, transcript, reason, expected",
        [
            (100, "", "dial_no_answer", CallOutcome.no_answer),
            (100, "", "dial_busy", CallOutcome.busy),
            (100, "", "voicemail_reached", CallOutcome.voicemail),
            (100, "", "invalid_destination", CallOutcome.wrong_number),
            (10, "appointment", None, CallOutcome.no_answer),
            (45, "Please leave a message after the tone", None, CallOutcome.voicemail),
            (45, "Great, let's schedule a viewing", None, CallOutcome.successful),
            (45, "Sorry, wrong number", None, CallOutcome.wrong_number),
            (90, "", "user_hangup", CallOutcome.successful),
            (45, "", None, CallOutcome.failed),
        ],
    )
    def test_outcomes(self, duration, transcript, reason, expected):
        event = CallEnded(
            call_id="c",
            duration=duration,
            transcript=transcript,
            disconnection_reason=reason,
        )
        assert determine_outcome(event) == expected


@pytest_asyncio.fixture
async def dialled(store, queue_store, make_client, make_lead):
    """A lead whose queue item is in progress with an initiated call."""
    await make_client()
    await make_lead("lead-1")
    item = await queue_store.enqueue(CLIENT, QueueItemCreate(lead_id="lead-1"))
    await queue_store.mark_in_progress(item.id)
    call = await CallRepository(store).create(
        Call(
            id="",
            lead_id="lead-1",
            client_id=CLIENT,
            queue_item_id=item.id,
            call_id=PROVIDER_CALL_ID,
        )
    )
    return item, call


@pytest.fixture
def mapper(store, queue_store, clock) -> CallOutcomeMapper:
    return CallOutcomeMapper(
        calls=CallRepository(store),
        queue=queue_store,
        clients=ClientRepository(store),
        leads=LeadRepository(store),
        clock=clock,
    )


def _ended(**kwargs) -> CallEnded:
    return CallEnded(call_id=PROVIDER_CALL_ID, **kwargs)


class TestApply:
    """State changes driven by provider events."""

    @pytest.mark.asyncio
    async def test_answered(self, mapper, dialled, store, clock):
        _, call = dialled
        assert await mapper.apply(CallAnswered(call_id=PROVIDER_CALL_ID)) is True

        updated = await CallRepository(store).get(call.id)
        assert updated.status == CallStatus.answered
        assert updated.started_at == clock.now

        assert await mapper.apply(CallAnswered(call_id=PROVIDER_CALL_ID)) is False

    @pytest.mark.asyncio
    async def test_successful_call_completes_item_and_contacts_lead(
        self, mapper, dialled, store, queue_store, clock
    ):
        item, call = dialled
        event = _ended(
            duration=120,
            transcript="We booked an appointment for Tuesday",
            recording_url="https://rec.example/abc.wav",
        )

        assert await mapper.apply(event) is True

        updated = await CallRepository(store).get(call.id)
        assert updated.status == CallStatus.completed
        assert updated.outcome == CallOutcome.successful
        assert updated.duration == 120
        assert updated.recording_url == "https://rec.example/abc.wav"
        assert updated.ended_at == clock.now
        assert (await queue_store.get(item.id)).status == QueueStatus.completed
        lead = await LeadRepository(store).get("lead-1")
        assert lead.status == LeadStatus.contacted
        assert lead.last_contacted == clock.now

    @pytest.mark.asyncio
    async def test_repeated_ended_event_is_a_no_op(
        self, mapper, dialled, store, queue_store, clock
    ):
        item, call = dialled
        event = _ended(duration=120, transcript="appointment")
        await mapper.apply(event)
        first = await CallRepository(store).get(call.id)

        clock.advance(minutes=3)
        assert await mapper.apply(event) is False

        assert await CallRepository(store).get(call.id) == first
        assert (await queue_store.get(item.id)).status == QueueStatus.completed

    @pytest.mark.asyncio
    async def test_no_answer_sends_item_back_for_retry(
        self, mapper, dialled, store, queue_store
    ):
        item, call = dialled
        await mapper.apply(_ended(duration=4, disconnection_reason="dial_no_answer"))

        updated = await CallRepository(store).get(call.id)
        assert updated.status == CallStatus.completed
        assert updated.outcome == CallOutcome.no_answer
        retried = await queue_store.get(item.id)
        assert retried.status == QueueStatus.pending
        assert retried.retry_count == 1

    @pytest.mark.asyncio
    async def test_voicemail_completes_item(self, mapper, dialled, queue_store):
        item, _ = dialled
        await mapper.apply(_ended(duration=40, transcript="leave a message"))
        assert (await queue_store.get(item.id)).status == QueueStatus.completed

    @pytest.mark.asyncio
    async def test_wrong_number_marks_lead_lost(self, mapper, dialled, store):
        await mapper.apply(_ended(duration=45, transcript="wrong number, sorry"))
        lead = await LeadRepository(store).get("lead-1")
        assert lead.status == LeadStatus.lost

    @pytest.mark.asyncio
    async def test_successful_call_keeps_advanced_lead_status(
        self, mapper, dialled, store
    ):
        await LeadRepository(store).update("lead-1", status=LeadStatus.qualified)
        await mapper.apply(_ended(duration=120, transcript="appointment"))
        lead = await LeadRepository(store).get("lead-1")
        assert lead.status == LeadStatus.qualified

    @pytest.mark.asyncio
    async def test_failed_event(self, mapper, dialled, store, queue_store):
        item, call = dialled
        assert await mapper.apply(
            CallFailed(call_id=PROVIDER_CALL_ID, reason="carrier rejected")
        ) is True

        updated = await CallRepository(store).get(call.id)
        assert updated.status == CallStatus.failed
        assert updated.outcome == CallOutcome.failed
        assert updated.error == "carrier rejected"
        retried = await queue_store.get(item.id)
        assert retried.status == QueueStatus.pending
        assert retried.metadata["last_error"] == "carrier rejected"

        assert await mapper.apply(_ended(duration=120)) is False

    @pytest.mark.asyncio
    async def test_analyzed_after_completion(self, mapper, dialled, store):
        _, call = dialled
        await mapper.apply(_ended(duration=120, transcript="appointment"))
        event = CallAnalyzed(
            call_id=PROVIDER_CALL_ID, summary="Booked Tuesday", sentiment="Positive"
        )

        assert await mapper.apply(event) is True

        updated = await CallRepository(store).get(call.id)
        assert updated.summary == "Booked Tuesday"
        assert updated.sentiment == "Positive"
        assert updated.status == CallStatus.completed

    @pytest.mark.asyncio
    async def test_empty_analysis_changes_nothing(self, mapper, dialled):
        assert await mapper.apply(CallAnalyzed(call_id=PROVIDER_CALL_ID)) is False

    @pytest.mark.asyncio
    async def test_unknown_call_id_is_ignored(self, mapper, dialled, queue_store):
        item, _ = dialled
        assert await mapper.apply(CallEnded(call_id="someone-else", duration=120)) is False
        assert (await queue_store.get(item.id)).status == QueueStatus.in_progress

    @pytest.mark.asyncio
    async def test_unknown_event_is_ignored(self, mapper, dialled):
        assert await mapper.apply(UnknownEvent(event_type="call_transferred")) is False
