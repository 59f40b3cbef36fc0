"""Render stage-machine turns as Twilio voice responses."""

import logging
from typing import Optional

from twilio.twiml.voice_response import VoiceResponse

from hotline.prompts import APOLOGY, GREETING, NO_INPUT, GOODBYE
from hotline.stages import Stage
from hotline.state_machine import Turn
from hotline.tts import ElevenLabsClient

logger = logging.getLogger(__name__)

GATHER_ACTION = "/webhook/gather"

# (timeout, speech_timeout) in seconds while waiting on the caller in each stage
GATHER_TIMEOUTS = {
    Stage.INITIAL: (15, 3),
    Stage.URGENT_DETAILS: (25, 4),
    Stage.COLLECT_ADDRESS: (25, 5),
    Stage.NON_URGENT_CALLBACK: (15, 3),
    Stage.SCHEDULE_CALLBACK: (15, 3),
}


class VoiceRenderer:
    def __init__(
        self,
        tts: Optional[ElevenLabsClient] = None,
        voice: str = "alice",
        language: str = "en-US",
    ):
        self.tts = tts
        self.voice = voice
        self.language = language

    async def _speak(self, target, text: str) -> None:
        url = await self.tts.synthesize(text) if self.tts is not None else None
        if url:
            target.play(url)
        else:
            target.say(text, voice=self.voice, language=self.language)

    async def _listen(self, response: VoiceResponse, stage: Stage, prompt: str) -> None:
        timeout, speech_timeout = GATHER_TIMEOUTS.get(stage, (15, 3))
        gather = response.gather(
            input="speech",
            action=GATHER_ACTION,
            method="POST",
            timeout=timeout,
            speech_timeout=speech_timeout,
            language=self.language,
        )
        await self._speak(gather, prompt)
        # Reached only if the caller says nothing
        await self._speak(response, NO_INPUT)
        response.hangup()

    async def greeting(self) -> str:
        response = VoiceResponse()
        await self._listen(response, Stage.INITIAL, GREETING)
        return str(response)

    async def render(self, turn: Turn) -> str:
        response = VoiceResponse()
        if turn.prompt_again and not turn.end_call:
            await self._listen(response, turn.stage, turn.speak)
        else:
            await self._speak(response, turn.speak or GOODBYE)
            response.hangup()
        return str(response)

    def apology(self) -> str:
        response = VoiceResponse()
        response.say(APOLOGY, voice=self.voice, language=self.language)
        response.hangup()
        return str(response)
