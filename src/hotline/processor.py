import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional, Protocol

from hotline.session import CallSession
from hotline.session_store import SessionStore
from hotline.state_machine import CompletionEvent, StageMachine, Turn

logger = logging.getLogger(__name__)


@dataclass
class InboundSpeech:
    """One speech-recognition result delivered by the telephony webhook."""

    call_id: str
    transcript: str
    confidence: float = 0.0
    caller: str = ""


class CompletionSink(Protocol):
    async def persist(self, event: CompletionEvent) -> dict: ...


class TurnProcessor:
    """Bridges telephony events and the stage machine.

    On each speech event:
    1. Resolve (or create) the caller's session from the store
    2. Record the caller's words on the transcript log
    3. Run the stage machine and record the reply
    4. Hand any completion event to the sink in the background, so durable
       storage never delays the spoken confirmation
    """

    def __init__(
        self,
        store: SessionStore,
        machine: StageMachine,
        sink: Optional[CompletionSink] = None,
    ):
        self.store = store
        self.machine = machine
        self.sink = sink
        self._pending: set[asyncio.Task] = set()

    async def handle(self, event: InboundSpeech) -> Turn:
        session = self.store.get_or_create(event.call_id, caller=event.caller)
        stage_before = session.stage
        text = (event.transcript or "").strip()
        logger.info(f"[{event.call_id}] [{stage_before.value}] Caller: {text!r} (conf: {event.confidence:.2f})")

        if text:
            self._log(session, "user", text, confidence=event.confidence)

        turn = await self.machine.process(session, text, event.confidence)
        self._log(session, "agent", turn.speak)
        logger.info(
            f"[{event.call_id}] {turn.kind}: {stage_before.value} -> {turn.stage.value}"
            f" (prompt_again={turn.prompt_again})"
        )

        completion = getattr(turn, "completion", None)
        if completion is not None and self.sink is not None:
            task = asyncio.create_task(self._safe_persist(completion))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        return turn

    async def drain(self) -> None:
        """Wait for in-flight persistence tasks. Used at shutdown and in tests."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _safe_persist(self, event: CompletionEvent) -> None:
        try:
            result = await self.sink.persist(event)
            logger.info(f"Persisted {event.kind} {event.reference_number}: {result}")
        except Exception as e:
            logger.error(f"Persisting {event.kind} {event.reference_number} failed: {e}")

    def _log(self, session: CallSession, role: str, content: str, **extra) -> None:
        session.transcript_log.append({
            "role": role,
            "content": content,
            "timestamp": time.time(),
            "stage": session.stage.value,
            **extra,
        })
