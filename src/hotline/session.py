import logging
import time
from dataclasses import dataclass, field

from hotline.stages import InvalidTransition, Stage, can_advance

logger = logging.getLogger(__name__)

# Field names as they appear in completion events and the admin API
DETAILED_MESSAGE = "detailedMessage"
BUSINESS_ADDRESS = "businessAddress"
CALLBACK_TIME = "callbackTime"
REFERENCE_NUMBER = "referenceNumber"
STATUS = "status"
TIMESTAMP = "timestamp"
ESTIMATED_RESPONSE = "estimatedResponse"
COMPLETED_AT = "completedAt"
NOTES = "notes"
UPDATED_AT = "updatedAt"

CONTEXT_TURNS_FOR_LLM = 3


@dataclass
class CallSession:
    call_id: str
    stage: Stage = Stage.INITIAL
    caller: str = ""

    # Collected during the call (detailedMessage, businessAddress, ...)
    fields: dict = field(default_factory=dict)

    # Classified issue plus the inquiry answer, for the callback record
    inquiry: str = ""

    # Short-term memory for the remote classifier
    context: list = field(default_factory=list)

    # Call metadata
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    transcript_log: list = field(default_factory=list)

    turn_count: int = 0
    reprompt_count: int = 0

    def touch(self) -> None:
        self.updated_at = time.time()

    def advance(self, new_stage: Stage) -> None:
        """Move forward along the stage graph; anything else is rejected."""
        if not can_advance(self.stage, new_stage):
            raise InvalidTransition(self.call_id, self.stage, new_stage)
        logger.info("[%s] %s -> %s", self.call_id, self.stage.value, new_stage.value)
        self.stage = new_stage
        self.reprompt_count = 0
        self.touch()

    def note_inquiry(self, text: str) -> None:
        if text:
            self.inquiry = f"{self.inquiry} | {text}" if self.inquiry else text

    def recent_context(self, turns: int = CONTEXT_TURNS_FOR_LLM) -> list:
        return list(self.context[-turns:])

    @property
    def reference_number(self) -> str:
        return self.fields.get(REFERENCE_NUMBER, "")

    @property
    def status(self) -> str:
        return self.fields.get(STATUS, "")
