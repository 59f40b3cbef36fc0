import re
from unittest.mock import AsyncMock, MagicMock

import pytest

from hotline.session import BUSINESS_ADDRESS, CALLBACK_TIME, DETAILED_MESSAGE, CallSession
from hotline.stages import Stage
from hotline.state_machine import (
    MAX_REPROMPTS_PER_STAGE,
    CallbackRequested,
    CallbackScheduled,
    CaseEscalated,
    Classified,
    Closing,
    DetailsCaptured,
    Reprompt,
    StageMachine,
    fallback_reference,
)

URGENT_REF = re.compile(r"^UBG-\d{6}$")
CALLBACK_REF = re.compile(r"^CBK-\d{6}$")


async def walk_urgent(machine, session):
    await machine.process(session, "My system is completely down and customers can't pay", 0.9)
    await machine.process(session, "The checkout returns an error since this morning", 0.9)
    return await machine.process(session, "Bahnhofstrasse 10, Zurich", 0.9)


async def walk_callback(machine, session):
    await machine.process(session, "How do I change my account settings?", 0.9)
    await machine.process(session, "About the notification settings", 0.9)
    return await machine.process(session, "Tomorrow at ten", 0.9)


class TestInitial:
    @pytest.mark.asyncio
    async def test_urgent_issue_moves_to_details(self, machine, session, llm):
        turn = await machine.process(session, "My system is completely down and customers can't pay", 0.9)
        assert isinstance(turn, Classified)
        assert turn.kind == "classified"
        assert turn.urgency == "urgent"
        assert turn.requires_address is True
        assert turn.stage == Stage.URGENT_DETAILS
        assert session.stage == Stage.URGENT_DETAILS
        assert turn.prompt_again is True
        assert llm.complete_json.await_count == 0

    @pytest.mark.asyncio
    async def test_question_moves_to_callback(self, machine, session, llm):
        turn = await machine.process(session, "How do I change my account settings?", 0.9)
        assert turn.urgency == "not_urgent"
        assert turn.stage == Stage.NON_URGENT_CALLBACK
        assert llm.complete_json.await_count == 0

    @pytest.mark.asyncio
    async def test_low_confidence_reprompts_without_classifying(self, machine, session, llm):
        turn = await machine.process(session, "yes", 0.2)
        assert isinstance(turn, Reprompt)
        assert turn.reason == "low_confidence"
        assert session.stage == Stage.INITIAL
        assert llm.complete_json.await_count == 0

    @pytest.mark.asyncio
    async def test_confident_noise_reprompts(self, machine, session):
        turn = await machine.process(session, "yes", 0.95)
        assert isinstance(turn, Reprompt)
        assert turn.reason == "noise"
        assert session.stage == Stage.INITIAL

    @pytest.mark.asyncio
    async def test_ambiguous_issue_uses_remote_verdict(self, machine, session, llm):
        turn = await machine.process(session, "Something weird is happening with our shop", 0.9)
        assert llm.complete_json.await_count == 1
        assert turn.source == "llm"
        assert session.stage == Stage.URGENT_DETAILS

    @pytest.mark.asyncio
    async def test_classifier_crash_escalates(self, session):
        classifier = MagicMock()
        classifier.classify = AsyncMock(side_effect=RuntimeError("boom"))
        turn = await StageMachine(classifier).process(session, "Something odd", 0.9)
        assert isinstance(turn, Classified)
        assert turn.source == "fallback"
        assert turn.confidence == 0.1
        assert session.stage == Stage.URGENT_DETAILS


class TestUrgentPath:
    @pytest.mark.asyncio
    async def test_full_urgent_call(self, machine, session):
        await machine.process(session, "My system is completely down and customers can't pay", 0.9)
        details = await machine.process(session, "The checkout returns an error since this morning", 0.9)
        assert isinstance(details, DetailsCaptured)
        assert session.stage == Stage.COLLECT_ADDRESS

        turn = await machine.process(session, "Bahnhofstrasse 10, Zurich", 0.9)
        assert isinstance(turn, CaseEscalated)
        assert URGENT_REF.match(turn.reference_number)
        assert turn.end_call is True
        assert turn.prompt_again is False
        assert turn.estimated_response == "within 30 minutes"
        assert session.stage == Stage.URGENT_COMPLETE
        assert session.fields[DETAILED_MESSAGE] == "The checkout returns an error since this morning"
        assert session.fields[BUSINESS_ADDRESS] == "Bahnhofstrasse 10, Zurich"
        assert session.reference_number == turn.reference_number
        assert session.status == "urgent_escalated"

    @pytest.mark.asyncio
    async def test_completion_event(self, machine, session):
        turn = await walk_urgent(machine, session)
        event = turn.completion
        assert event.kind == "urgent_case"
        assert event.reference_number == turn.reference_number
        assert event.call_id == "CA_test_123"
        assert event.caller == "+41445551234"
        assert event.fields[BUSINESS_ADDRESS] == "Bahnhofstrasse 10, Zurich"

    @pytest.mark.asyncio
    async def test_reference_is_spoken_digit_by_digit(self, machine, session):
        turn = await walk_urgent(machine, session)
        digits = turn.reference_number.split("-")[1]
        assert " ".join(digits) in turn.speak

    @pytest.mark.asyncio
    async def test_empty_details_reprompt(self, machine, session):
        await machine.process(session, "Our server crashed", 0.9)
        turn = await machine.process(session, "", 0.0)
        assert isinstance(turn, Reprompt)
        assert turn.reason == "empty"
        assert session.stage == Stage.URGENT_DETAILS

    @pytest.mark.asyncio
    async def test_reference_failure_uses_call_derived_reference(self, machine, session, monkeypatch):
        def broken(prefix):
            raise RuntimeError("rng unavailable")

        monkeypatch.setattr("hotline.state_machine.new_reference", broken)
        turn = await walk_urgent(machine, session)
        assert isinstance(turn, CaseEscalated)
        assert turn.reference_number == fallback_reference("UBG", session.call_id)
        assert URGENT_REF.match(turn.reference_number)
        assert session.stage == Stage.URGENT_COMPLETE


class TestCallbackPath:
    @pytest.mark.asyncio
    async def test_full_callback_call(self, machine, session):
        await machine.process(session, "How do I change my account settings?", 0.9)
        requested = await machine.process(session, "About the notification settings", 0.9)
        assert isinstance(requested, CallbackRequested)
        assert session.stage == Stage.SCHEDULE_CALLBACK

        turn = await machine.process(session, "Tomorrow at ten", 0.9)
        assert isinstance(turn, CallbackScheduled)
        assert CALLBACK_REF.match(turn.reference_number)
        assert turn.callback_time == "Tomorrow at ten"
        assert turn.end_call is True
        assert session.stage == Stage.CALLBACK_COMPLETE
        assert session.fields[CALLBACK_TIME] == "Tomorrow at ten"
        assert session.status == "callback_scheduled"

    @pytest.mark.asyncio
    async def test_inquiry_stage_advances_on_any_input(self, machine, session):
        await machine.process(session, "How do I change my account settings?", 0.9)
        turn = await machine.process(session, "", 0.0)
        assert isinstance(turn, CallbackRequested)
        assert session.stage == Stage.SCHEDULE_CALLBACK
        assert session.inquiry == "How do I change my account settings?"
        assert "inquiry" not in session.fields

    @pytest.mark.asyncio
    async def test_completion_event(self, machine, session):
        turn = await walk_callback(machine, session)
        assert turn.completion.kind == "callback"
        assert turn.completion.fields["inquiry"] == (
            "How do I change my account settings? | About the notification settings"
        )
        assert turn.completion.fields[CALLBACK_TIME] == "Tomorrow at ten"

    @pytest.mark.asyncio
    async def test_reference_failure_uses_call_derived_reference(self, machine, session, monkeypatch):
        def broken(prefix):
            raise RuntimeError("rng unavailable")

        monkeypatch.setattr("hotline.state_machine.new_reference", broken)
        turn = await walk_callback(machine, session)
        assert turn.reference_number == fallback_reference("CBK", session.call_id)
        assert session.stage == Stage.CALLBACK_COMPLETE


class TestTerminal:
    @pytest.mark.asyncio
    async def test_completed_call_ignores_further_speech(self, machine, session, llm):
        await walk_urgent(machine, session)
        fields = dict(session.fields)
        turn = await machine.process(session, "Actually our database is also gone", 0.9)
        assert isinstance(turn, Closing)
        assert turn.end_call is True
        assert session.stage == Stage.URGENT_COMPLETE
        assert session.fields == fields

    @pytest.mark.asyncio
    async def test_completed_callback_ignores_further_speech(self, machine, session):
        await walk_callback(machine, session)
        reference = session.reference_number
        await machine.process(session, "One more thing", 0.9)
        assert session.stage == Stage.CALLBACK_COMPLETE
        assert session.reference_number == reference


class TestRepromptLimit:
    @pytest.mark.asyncio
    async def test_closes_after_limit(self, machine, session):
        await machine.process(session, "Our server crashed", 0.9)
        for _ in range(MAX_REPROMPTS_PER_STAGE):
            turn = await machine.process(session, "", 0.0)
            assert isinstance(turn, Reprompt)
        turn = await machine.process(session, "", 0.0)
        assert isinstance(turn, Closing)
        assert session.stage == Stage.URGENT_DETAILS
        assert turn.end_call is True

    @pytest.mark.asyncio
    async def test_unintelligible_urgent_call_is_logged_as_partial_case(self, machine, session):
        await machine.process(session, "Our server crashed", 0.9)
        await machine.process(session, "Nothing loads at all", 0.9)
        for _ in range(MAX_REPROMPTS_PER_STAGE):
            await machine.process(session, "uh", 0.3)
        turn = await machine.process(session, "uh", 0.3)
        assert isinstance(turn, Closing)
        event = turn.completion
        assert event.kind == "urgent_case"
        assert URGENT_REF.match(event.reference_number)
        assert event.fields[DETAILED_MESSAGE] == "Nothing loads at all"
        assert session.status == "urgent_incomplete"
        assert session.reference_number == event.reference_number
        assert session.stage == Stage.COLLECT_ADDRESS

        again = await machine.process(session, "uh", 0.3)
        assert isinstance(again, Closing)
        assert again.completion is None
        assert session.reference_number == event.reference_number

    @pytest.mark.asyncio
    async def test_callback_limit_closes_without_record(self, machine, session):
        await machine.process(session, "How do I change my account settings?", 0.9)
        await machine.process(session, "", 0.0)
        for _ in range(MAX_REPROMPTS_PER_STAGE):
            await machine.process(session, "", 0.0)
        turn = await machine.process(session, "", 0.0)
        assert isinstance(turn, Closing)
        assert turn.completion is None
        assert session.reference_number == ""

    @pytest.mark.asyncio
    async def test_counter_resets_on_advance(self, machine, session):
        await machine.process(session, "hm", 0.9)
        await machine.process(session, "hm", 0.9)
        assert session.reprompt_count == 2
        await machine.process(session, "Our server crashed", 0.9)
        assert session.reprompt_count == 0


class TestForwardOnly:
    @pytest.mark.asyncio
    async def test_stages_never_regress(self, machine):
        order = list(Stage)
        session = CallSession(call_id="CA_walk")
        seen = [session.stage]
        for text in (
            "hm",
            "My server is down",
            "",
            "Everything returns an error",
            "Bahnhofstrasse 10, Zurich",
            "hello again",
        ):
            await machine.process(session, text, 0.9)
            seen.append(session.stage)
        assert all(order.index(b) >= order.index(a) for a, b in zip(seen, seen[1:]))
        assert seen[-1] == Stage.URGENT_COMPLETE
