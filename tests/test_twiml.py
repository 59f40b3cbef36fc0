from unittest.mock import AsyncMock, MagicMock

import pytest

from hotline.prompts import APOLOGY, GREETING, NO_INPUT
from hotline.stages import Stage
from hotline.state_machine import CaseEscalated, Closing, Reprompt
from hotline.twiml import VoiceRenderer


@pytest.fixture
def renderer():
    return VoiceRenderer()


class TestRender:
    @pytest.mark.asyncio
    async def test_greeting_gathers_speech(self, renderer):
        xml = await renderer.greeting()
        assert "<Gather" in xml
        assert 'action="/webhook/gather"' in xml
        assert 'input="speech"' in xml
        assert GREETING in xml
        assert "<Hangup" in xml

    @pytest.mark.asyncio
    async def test_prompting_turn_gathers(self, renderer):
        xml = await renderer.render(Reprompt(speak="Please repeat that", stage=Stage.URGENT_DETAILS))
        assert "<Gather" in xml
        assert "Please repeat that" in xml
        assert 'timeout="25"' in xml

    @pytest.mark.asyncio
    async def test_final_turn_hangs_up_without_gather(self, renderer):
        turn = CaseEscalated(speak="Your case is escalated", stage=Stage.URGENT_COMPLETE)
        xml = await renderer.render(turn)
        assert "<Gather" not in xml
        assert "Your case is escalated" in xml
        assert "<Hangup" in xml

    @pytest.mark.asyncio
    async def test_closing_hangs_up(self, renderer):
        xml = await renderer.render(Closing(speak="Bye now", stage=Stage.INITIAL))
        assert "<Gather" not in xml
        assert "<Hangup" in xml

    @pytest.mark.asyncio
    async def test_no_input_fallback_after_gather(self, renderer):
        xml = await renderer.render(Reprompt(speak="Again please", stage=Stage.INITIAL))
        assert xml.index("</Gather>") < xml.index(NO_INPUT)

    def test_apology(self, renderer):
        xml = renderer.apology()
        assert "<Say" in xml
        assert "<Hangup" in xml
        assert APOLOGY in xml


class TestSynthesizedVoice:
    @pytest.mark.asyncio
    async def test_plays_synthesized_audio(self):
        tts = MagicMock()
        tts.synthesize = AsyncMock(return_value="https://hotline.example.com/audio/abc.mp3")
        xml = await VoiceRenderer(tts).render(Closing(speak="Bye now", stage=Stage.INITIAL))
        assert "<Play>https://hotline.example.com/audio/abc.mp3</Play>" in xml
        assert "<Say" not in xml

    @pytest.mark.asyncio
    async def test_falls_back_to_say(self):
        tts = MagicMock()
        tts.synthesize = AsyncMock(return_value=None)
        xml = await VoiceRenderer(tts).render(Closing(speak="Bye now", stage=Stage.INITIAL))
        assert "<Say" in xml
        assert "Bye now" in xml
