"""Optional ElevenLabs speech synthesis for caller-facing prompts.

``synthesize()`` returns a URL Twilio can ``<Play>``, or ``None`` whenever
synthesis isn't possible; callers then fall back to Twilio's own ``<Say>``.
Generated clips are kept in a small in-memory cache and served by the
``/audio/{key}.mp3`` route.
"""

import hashlib
import logging
from collections import OrderedDict
from typing import Optional

import httpx

from hotline.resilience import CircuitBreaker, attempt

logger = logging.getLogger(__name__)

ELEVENLABS_BASE_URL = "https://api.elevenlabs.io/v1"
DEFAULT_VOICE_ID = "EXAVITQu4vr4xnSDxMaL"
DEFAULT_MODEL = "eleven_multilingual_v2"
MAX_CACHED_CLIPS = 200
# Overall deadline per clip, across connect, upload and download
SYNTHESIS_TIMEOUT_S = 3.0

VOICE_SETTINGS = {
    "stability": 0.75,
    "similarity_boost": 0.85,
    "style": 0.2,
    "use_speaker_boost": True,
}


class ElevenLabsClient:
    def __init__(
        self,
        api_key: str = "",
        voice_id: str = DEFAULT_VOICE_ID,
        public_base_url: str = "",
        model: str = DEFAULT_MODEL,
        timeout: float = 10.0,
        synthesis_timeout: float = SYNTHESIS_TIMEOUT_S,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.voice_id = voice_id or DEFAULT_VOICE_ID
        self.public_base_url = public_base_url.rstrip("/")
        self.model = model
        self.synthesis_timeout = synthesis_timeout
        self._cache: OrderedDict[str, bytes] = OrderedDict()
        self._circuit = CircuitBreaker(
            failure_threshold=3,
            cooldown_seconds=60.0,
            label="ElevenLabs TTS",
        )
        if client is not None:
            self._client = client
        else:
            self._client = httpx.AsyncClient(
                base_url=ELEVENLABS_BASE_URL,
                headers={"xi-api-key": api_key},
                timeout=timeout,
            )

    @property
    def enabled(self) -> bool:
        return bool(self.api_key and self.public_base_url)

    async def close(self):
        await self._client.aclose()

    def cache_key(self, text: str) -> str:
        return hashlib.sha1(f"{self.voice_id}:{self.model}:{text}".encode("utf-8")).hexdigest()

    def get_audio(self, key: str) -> Optional[bytes]:
        return self._cache.get(key)

    def _url(self, key: str) -> str:
        return f"{self.public_base_url}/audio/{key}.mp3"

    async def synthesize(self, text: str) -> Optional[str]:
        """Return a playable URL for text, or ``None`` to use ``<Say>`` instead."""
        if not self.enabled or not text.strip():
            return None
        key = self.cache_key(text)
        if key in self._cache:
            self._cache.move_to_end(key)
            return self._url(key)

        async def generate() -> Optional[str]:
            resp = await self._client.post(
                f"/text-to-speech/{self.voice_id}",
                headers={"Accept": "audio/mpeg"},
                json={
                    "text": text,
                    "model_id": self.model,
                    "voice_settings": VOICE_SETTINGS,
                },
            )
            resp.raise_for_status()
            self._store(key, resp.content)
            return self._url(key)

        return await attempt(
            generate,
            None,
            label="ElevenLabs synthesis",
            circuit=self._circuit,
            timeout=self.synthesis_timeout,
        )

    def _store(self, key: str, audio: bytes) -> None:
        self._cache[key] = audio
        while len(self._cache) > MAX_CACHED_CLIPS:
            self._cache.popitem(last=False)
