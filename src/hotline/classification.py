import logging
from dataclasses import dataclass
from typing import Optional

from hotline.llm import LLMClient
from hotline.prompts import CLASSIFY_PROMPT, SCRIPTS
from hotline.resilience import attempt
from hotline.session import CallSession, CONTEXT_TURNS_FOR_LLM
from hotline.validation import check_transcript, count_keywords

logger = logging.getLogger(__name__)

URGENT = "urgent"
NOT_URGENT = "not_urgent"
NEEDS_REPEAT = "needs_repeat"

DEFAULT_TIMEOUT_S = 8.0
FALLBACK_CONFIDENCE = 0.1


@dataclass
class Classification:
    verdict: str
    confidence: float
    response_text: str
    requires_address: bool
    source: str
    issue_type: str = ""
    rejection: str = ""

    @property
    def is_urgent(self) -> bool:
        return self.verdict == URGENT

    @property
    def needs_repeat(self) -> bool:
        return self.verdict == NEEDS_REPEAT


def _keyword_confidence(winner: int, loser: int) -> float:
    return round(min(0.95, 0.6 + 0.1 * (winner - loser)), 2)


def escalation_fallback() -> Classification:
    """Verdict used when the remote classifier can't answer: err toward urgent."""
    return Classification(
        verdict=URGENT,
        confidence=FALLBACK_CONFIDENCE,
        response_text=SCRIPTS["ack_fallback"],
        requires_address=True,
        source="fallback",
        issue_type="unclassified",
    )


class Classifier:
    """Urgency classification: keyword heuristics first, remote model on a tie.

    The keyword step is synchronous and decides whenever one keyword set
    strictly outnumbers the other.  Only ties (including no hits at all) reach
    the language model, and that call is bounded by ``timeout``.  Every tie
    gets its own remote attempt; there is no breaker in front of it.
    """

    def __init__(
        self,
        llm: Optional[LLMClient] = None,
        timeout: float = DEFAULT_TIMEOUT_S,
    ):
        self.llm = llm
        self.timeout = timeout

    async def classify(self, transcript: str, session: CallSession) -> Classification:
        rejection = check_transcript(transcript)
        if rejection:
            logger.info("[%s] Transcript rejected: %s", session.call_id, rejection)
            return Classification(
                verdict=NEEDS_REPEAT,
                confidence=0.0,
                response_text=SCRIPTS["reprompt_initial"],
                requires_address=False,
                source="validation",
                rejection=rejection,
            )

        text = transcript.strip()
        verdict = self.classify_keywords(text)
        if verdict is not None:
            logger.info(
                "[%s] Keyword verdict: %s (%.2f)",
                session.call_id, verdict.verdict, verdict.confidence,
            )
            return verdict

        result = await self._classify_remote(text, session)
        logger.info(
            "[%s] %s verdict: %s (%.2f)",
            session.call_id, result.source, result.verdict, result.confidence,
        )
        return result

    def classify_keywords(self, text: str) -> Optional[Classification]:
        """Decide from keyword counts alone; ``None`` on a tie."""
        urgent, non_urgent = count_keywords(text)
        if urgent > non_urgent:
            return Classification(
                verdict=URGENT,
                confidence=_keyword_confidence(urgent, non_urgent),
                response_text=SCRIPTS["ack_urgent"],
                requires_address=True,
                source="keywords",
            )
        if non_urgent > urgent:
            return Classification(
                verdict=NOT_URGENT,
                confidence=_keyword_confidence(non_urgent, urgent),
                response_text=SCRIPTS["ack_not_urgent"],
                requires_address=False,
                source="keywords",
            )
        return None

    async def _classify_remote(self, text: str, session: CallSession) -> Classification:
        if self.llm is None or not self.llm.configured:
            logger.warning("[%s] No LLM configured, escalating ambiguous issue", session.call_id)
            return escalation_fallback()

        turns = session.recent_context() + [{"role": "user", "content": text}]
        messages = [{"role": "system", "content": CLASSIFY_PROMPT}, *turns[-CONTEXT_TURNS_FOR_LLM:]]

        async def ask() -> Classification:
            data = await self.llm.complete_json(messages)
            return _parse_remote(data)

        result = await attempt(
            ask,
            None,
            label=f"[{session.call_id}] Remote classification",
            timeout=self.timeout,
        )
        if result is None:
            return escalation_fallback()

        session.context.append({"role": "user", "content": text})
        session.context.append({"role": "assistant", "content": result.response_text})
        return result


def _parse_remote(data: dict) -> Classification:
    urgency = str(data.get("urgency", "")).strip().lower()
    if urgency not in (URGENT, NOT_URGENT):
        raise ValueError(f"unexpected urgency {urgency!r}")
    try:
        confidence = float(data.get("confidence", 0.5))
    except (TypeError, ValueError):
        confidence = 0.5
    confidence = max(0.0, min(1.0, confidence))
    response = str(data.get("response") or "").strip()[:300]
    if not response:
        response = SCRIPTS["ack_urgent"] if urgency == URGENT else SCRIPTS["ack_not_urgent"]
    return Classification(
        verdict=urgency,
        confidence=confidence,
        response_text=response,
        requires_address=urgency == URGENT,
        source="llm",
        issue_type=str(data.get("issue_type") or ""),
    )
