import logging
import random
import zlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import ClassVar, Optional

from hotline.classification import Classifier
from hotline.prompts import GOODBYE, SCRIPTS, spell_reference
from hotline.resilience import attempt
from hotline.session import (
    BUSINESS_ADDRESS,
    CALLBACK_TIME,
    COMPLETED_AT,
    DETAILED_MESSAGE,
    ESTIMATED_RESPONSE,
    REFERENCE_NUMBER,
    STATUS,
    TIMESTAMP,
    CallSession,
)
from hotline.stages import Stage
from hotline.validation import check_transcript, is_confident

logger = logging.getLogger(__name__)

MAX_REPROMPTS_PER_STAGE = 3

URGENT_PREFIX = "UBG"
CALLBACK_PREFIX = "CBK"
ESTIMATED_RESPONSE_WINDOW = "within 30 minutes"

STATUS_URGENT_PENDING = "urgent_pending"
STATUS_CALLBACK_PENDING = "callback_pending"
STATUS_URGENT_ESCALATED = "urgent_escalated"
STATUS_CALLBACK_SCHEDULED = "callback_scheduled"
STATUS_URGENT_INCOMPLETE = "urgent_incomplete"


def new_reference(prefix: str) -> str:
    return f"{prefix}-{random.randint(0, 999_999):06d}"


def fallback_reference(prefix: str, call_id: str) -> str:
    """Reference derived from the call id, used when normal generation failed."""
    return f"{prefix}-{zlib.crc32(call_id.encode('utf-8')) % 1_000_000:06d}"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class CompletionEvent:
    kind: str  # urgent_case | callback
    reference_number: str
    call_id: str
    caller: str = ""
    fields: dict = field(default_factory=dict)


# ── Turn results, one type per outcome ──

@dataclass
class Turn:
    kind: ClassVar[str] = "turn"

    speak: str = ""
    stage: Stage = Stage.INITIAL
    prompt_again: bool = True
    end_call: bool = False


@dataclass
class Reprompt(Turn):
    kind: ClassVar[str] = "reprompt"

    reason: str = ""


@dataclass
class Classified(Turn):
    kind: ClassVar[str] = "classified"

    urgency: str = ""
    confidence: float = 0.0
    requires_address: bool = False
    source: str = ""


@dataclass
class DetailsCaptured(Turn):
    kind: ClassVar[str] = "details_captured"


@dataclass
class CaseEscalated(Turn):
    kind: ClassVar[str] = "case_escalated"

    prompt_again: bool = False
    end_call: bool = True
    reference_number: str = ""
    estimated_response: str = ESTIMATED_RESPONSE_WINDOW
    completion: Optional[CompletionEvent] = None


@dataclass
class CallbackRequested(Turn):
    kind: ClassVar[str] = "callback_requested"


@dataclass
class CallbackScheduled(Turn):
    kind: ClassVar[str] = "callback_scheduled"

    prompt_again: bool = False
    end_call: bool = True
    reference_number: str = ""
    callback_time: str = ""
    completion: Optional[CompletionEvent] = None


@dataclass
class Closing(Turn):
    kind: ClassVar[str] = "closing"

    prompt_again: bool = False
    end_call: bool = True
    completion: Optional[CompletionEvent] = None


REPROMPT_SCRIPTS = {
    Stage.INITIAL: "reprompt_initial",
    Stage.URGENT_DETAILS: "reprompt_details",
    Stage.COLLECT_ADDRESS: "reprompt_address",
    Stage.NON_URGENT_CALLBACK: "reprompt_callback",
    Stage.SCHEDULE_CALLBACK: "reprompt_time",
}


class StageMachine:
    """Drives one call through the support flow, one speech event at a time.

    ``process()`` looks up ``_handle_<stage>`` for the session's current
    stage.  Handlers run under ``attempt()``; if one raises, the matching
    ``_fallback_<stage>`` produces the turn instead, so the caller always gets
    an answer and, on the completing stages, a reference number.
    """

    def __init__(self, classifier: Classifier):
        self.classifier = classifier

    async def process(self, session: CallSession, transcript: str, confidence: float = 1.0) -> Turn:
        session.turn_count += 1
        session.touch()
        text = (transcript or "").strip()

        handler = getattr(self, f"_handle_{session.stage.value}", None)
        if session.stage.is_terminal or handler is None:
            return self._closing(session)

        fallback = getattr(self, f"_fallback_{session.stage.value}")
        return await attempt(
            lambda: handler(session, text, confidence),
            lambda: fallback(session, text),
            label=f"[{session.call_id}] {session.stage.value} handler",
        )

    # ── Stage handlers ──

    async def _handle_initial(self, session: CallSession, text: str, confidence: float) -> Turn:
        if not is_confident(text, confidence):
            return self._reprompt(session, "low_confidence")

        result = await self.classifier.classify(text, session)
        if result.needs_repeat:
            return self._reprompt(session, result.rejection)

        if result.is_urgent:
            session.fields[STATUS] = STATUS_URGENT_PENDING
            session.advance(Stage.URGENT_DETAILS)
            follow_up = SCRIPTS["ask_details"]
        else:
            session.fields[STATUS] = STATUS_CALLBACK_PENDING
            session.note_inquiry(text)
            session.advance(Stage.NON_URGENT_CALLBACK)
            follow_up = SCRIPTS["ask_inquiry"]

        return Classified(
            speak=f"{result.response_text} {follow_up}",
            stage=session.stage,
            urgency=result.verdict,
            confidence=result.confidence,
            requires_address=result.requires_address,
            source=result.source,
        )

    async def _handle_urgent_details(self, session: CallSession, text: str, confidence: float) -> Turn:
        rejection = check_transcript(text)
        if rejection:
            return self._reprompt(session, rejection)
        session.fields[DETAILED_MESSAGE] = text
        session.fields[TIMESTAMP] = _now_iso()
        session.advance(Stage.COLLECT_ADDRESS)
        return DetailsCaptured(speak=SCRIPTS["ask_address"], stage=session.stage)

    async def _handle_collect_address(self, session: CallSession, text: str, confidence: float) -> Turn:
        rejection = check_transcript(text)
        if rejection:
            return self._reprompt(session, rejection)
        return self._escalate(session, text, session.reference_number or new_reference(URGENT_PREFIX))

    async def _handle_non_urgent_callback(self, session: CallSession, text: str, confidence: float) -> Turn:
        if not check_transcript(text):
            session.note_inquiry(text)
        session.advance(Stage.SCHEDULE_CALLBACK)
        return CallbackRequested(speak=SCRIPTS["ask_callback_time"], stage=session.stage)

    async def _handle_schedule_callback(self, session: CallSession, text: str, confidence: float) -> Turn:
        rejection = check_transcript(text)
        if rejection:
            return self._reprompt(session, rejection)
        return self._schedule(session, text, new_reference(CALLBACK_PREFIX))

    # ── Fallbacks when a handler raised ──

    def _fallback_initial(self, session: CallSession, text: str) -> Turn:
        # Unknown severity: escalate rather than risk dropping an emergency
        if session.stage is Stage.INITIAL:
            session.fields[STATUS] = STATUS_URGENT_PENDING
            session.advance(Stage.URGENT_DETAILS)
        return Classified(
            speak=SCRIPTS["ack_fallback"],
            stage=session.stage,
            urgency="urgent",
            confidence=0.1,
            requires_address=True,
            source="fallback",
        )

    def _fallback_urgent_details(self, session: CallSession, text: str) -> Turn:
        if session.stage is Stage.URGENT_DETAILS:
            session.fields.setdefault(DETAILED_MESSAGE, text)
            session.fields.setdefault(TIMESTAMP, _now_iso())
            session.advance(Stage.COLLECT_ADDRESS)
        return DetailsCaptured(speak=SCRIPTS["fallback_details"], stage=session.stage)

    def _fallback_collect_address(self, session: CallSession, text: str) -> Turn:
        reference = session.reference_number or fallback_reference(URGENT_PREFIX, session.call_id)
        return self._escalate(session, text, reference)

    def _fallback_non_urgent_callback(self, session: CallSession, text: str) -> Turn:
        if session.stage is Stage.NON_URGENT_CALLBACK:
            if not check_transcript(text):
                session.note_inquiry(text)
            session.advance(Stage.SCHEDULE_CALLBACK)
        return CallbackRequested(speak=SCRIPTS["fallback_inquiry"], stage=session.stage)

    def _fallback_schedule_callback(self, session: CallSession, text: str) -> Turn:
        reference = session.reference_number or fallback_reference(CALLBACK_PREFIX, session.call_id)
        return self._schedule(session, text, reference)

    # ── Helpers ──

    def _escalate(self, session: CallSession, address: str, reference: str) -> CaseEscalated:
        if session.stage is Stage.COLLECT_ADDRESS:
            now = _now_iso()
            session.fields[BUSINESS_ADDRESS] = address
            session.fields[REFERENCE_NUMBER] = reference
            session.fields[STATUS] = STATUS_URGENT_ESCALATED
            session.fields[ESTIMATED_RESPONSE] = ESTIMATED_RESPONSE_WINDOW
            session.fields.setdefault(TIMESTAMP, now)
            session.fields[COMPLETED_AT] = now
            session.advance(Stage.URGENT_COMPLETE)
            logger.info("[%s] URGENT CASE COMPLETE: %s", session.call_id, reference)
        return CaseEscalated(
            speak=SCRIPTS["case_escalated"].format(
                reference=spell_reference(reference), window=ESTIMATED_RESPONSE_WINDOW,
            ),
            stage=session.stage,
            reference_number=reference,
            completion=CompletionEvent(
                kind="urgent_case",
                reference_number=reference,
                call_id=session.call_id,
                caller=session.caller,
                fields=dict(session.fields),
            ),
        )

    def _schedule(self, session: CallSession, callback_time: str, reference: str) -> CallbackScheduled:
        if session.stage is Stage.SCHEDULE_CALLBACK:
            now = _now_iso()
            session.fields[CALLBACK_TIME] = callback_time
            session.fields[REFERENCE_NUMBER] = reference
            session.fields[STATUS] = STATUS_CALLBACK_SCHEDULED
            session.fields[TIMESTAMP] = now
            session.fields[COMPLETED_AT] = now
            session.advance(Stage.CALLBACK_COMPLETE)
            logger.info("[%s] CALLBACK SCHEDULED: %s", session.call_id, reference)
        return CallbackScheduled(
            speak=SCRIPTS["callback_scheduled"].format(
                time=callback_time or "at your preferred time",
                reference=spell_reference(reference),
            ),
            stage=session.stage,
            reference_number=reference,
            callback_time=callback_time,
            completion=CompletionEvent(
                kind="callback",
                reference_number=reference,
                call_id=session.call_id,
                caller=session.caller,
                fields={"inquiry": session.inquiry, **session.fields},
            ),
        )

    def _reprompt(self, session: CallSession, reason: str) -> Turn:
        session.reprompt_count += 1
        if session.reprompt_count > MAX_REPROMPTS_PER_STAGE:
            logger.warning(
                "[%s] Re-prompt limit reached in %s, closing call",
                session.call_id, session.stage.value,
            )
            if session.stage in (Stage.URGENT_DETAILS, Stage.COLLECT_ADDRESS):
                return self._log_partial_case(session)
            return Closing(speak=SCRIPTS["too_many_reprompts"], stage=session.stage)
        logger.info("[%s] Re-prompting in %s (%s)", session.call_id, session.stage.value, reason)
        return Reprompt(
            speak=SCRIPTS[REPROMPT_SCRIPTS[session.stage]],
            stage=session.stage,
            reason=reason,
        )

    def _log_partial_case(self, session: CallSession) -> Closing:
        """Hang up on an unintelligible urgent call, keeping what was collected on record."""
        if session.reference_number:
            return Closing(speak=SCRIPTS["too_many_reprompts"], stage=session.stage)
        reference = new_reference(URGENT_PREFIX)
        now = _now_iso()
        session.fields[REFERENCE_NUMBER] = reference
        session.fields[STATUS] = STATUS_URGENT_INCOMPLETE
        session.fields.setdefault(TIMESTAMP, now)
        session.fields[COMPLETED_AT] = now
        logger.info("[%s] PARTIAL URGENT CASE: %s", session.call_id, reference)
        return Closing(
            speak=SCRIPTS["urgent_logged"].format(reference=spell_reference(reference)),
            stage=session.stage,
            completion=CompletionEvent(
                kind="urgent_case",
                reference_number=reference,
                call_id=session.call_id,
                caller=session.caller,
                fields=dict(session.fields),
            ),
        )

    def _closing(self, session: CallSession) -> Turn:
        return Closing(speak=GOODBYE, stage=session.stage)
