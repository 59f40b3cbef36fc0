import json
import logging

import httpx

logger = logging.getLogger(__name__)

OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4o-mini"


class LLMClient:
    """Thin client for OpenAI chat completions in JSON mode.

    Errors propagate (``httpx.HTTPError`` for transport/status failures,
    ``ValueError`` for a reply that is not a JSON object); callers decide the
    fallback.
    """

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        base_url: str = OPENAI_BASE_URL,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        if client is not None:
            self._client = client
        else:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Authorization": f"Bearer {api_key}"},
                timeout=timeout,
            )

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def close(self):
        await self._client.aclose()

    async def complete_json(
        self,
        messages: list[dict],
        temperature: float = 0.2,
        max_tokens: int = 300,
    ) -> dict:
        resp = await self._client.post(
            "/chat/completions",
            json={
                "model": self.model,
                "temperature": temperature,
                "max_tokens": max_tokens,
                "response_format": {"type": "json_object"},
                "messages": messages,
            },
        )
        resp.raise_for_status()
        try:
            content = resp.json()["choices"][0]["message"]["content"]
            data = json.loads(content)
        except (KeyError, IndexError, TypeError, json.JSONDecodeError) as e:
            raise ValueError(f"malformed completion: {e}") from e
        if not isinstance(data, dict):
            raise ValueError("completion is not a JSON object")
        return data
