# map_narrator/services/llm_client.py

import json
from typing import AsyncIterator, Optional

import httpx

from map_narrator.core.config import Settings
from map_narrator.core.errors import LLMConfigError, LLMUpstreamError
from map_narrator.core.logging_config import logger


class LLMClient:
    """
    Thin client for an Ollama-style `/api/generate` endpoint.

    The endpoint streams newline-delimited JSON objects shaped like
    `{"response": "<fragment>", "done": false}`; `stream` yields the
    fragments in order until `done` is true.
    """

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.settings = settings
        self._transport = transport

    def build_payload(self, prompt: str, json_mode: bool = True) -> dict:
        s = self.settings
        payload = {
            "model": s.LLM_MODEL,
            "stream": True,
            "keep_alive": s.LLM_KEEP_ALIVE,
            "options": {
                "stop": list(s.LLM_STOP),
                "temperature": s.LLM_TEMPERATURE,
                "num_predict": s.LLM_NUM_PREDICT,
                "num_ctx": s.LLM_NUM_CTX,
                "top_p": s.LLM_TOP_P,
                "repeat_penalty": s.LLM_REPEAT_PENALTY,
            },
            "prompt": prompt,
        }
        if json_mode:
            payload["format"] = "json"
        return payload

    async def stream(self, prompt: str, json_mode: bool = True) -> AsyncIterator[str]:
        url = self.settings.LLM_URL
        if not url:
            raise LLMConfigError("LLM_URL is not configured")

        headers = {"Content-Type": "application/json"}
        if self.settings.LLM_TOKEN:
            headers["Authorization"] = f"Bearer {self.settings.LLM_TOKEN}"

        payload = self.build_payload(prompt, json_mode=json_mode)
        logger.info(f"LLM stream start: model={self.settings.LLM_MODEL} json_mode={json_mode}")

        try:
            async with httpx.AsyncClient(timeout=self.settings.LLM_TIMEOUT_S, transport=self._transport) as client:
                async with client.stream("POST", url, json=payload, headers=headers) as response:
                    if response.is_error:
                        body = (await response.aread()).decode("utf-8", errors="replace")
                        raise LLMUpstreamError(
                            f"LLM upstream error: HTTP {response.status_code}",
                            status_code=response.status_code,
                            body=body,
                        )

                    async for line in response.aiter_lines():
                        line = line.strip()
                        if not line:
                            continue
                        try:
                            chunk = json.loads(line)
                        except ValueError:
                            logger.warning(f"LLM stream: skipping malformed line ({len(line)} chars)")
                            continue
                        if not isinstance(chunk, dict):
                            continue

                        fragment = chunk.get("response")
                        if fragment:
                            yield fragment
                        if chunk.get("done"):
                            return
        except httpx.HTTPError as exc:
            raise LLMUpstreamError(f"LLM request failed: {exc!r}") from exc

    async def generate_text(self, prompt: str, json_mode: bool = True) -> str:
        """Buffer the whole streamed response."""
        chunks = [fragment async for fragment in self.stream(prompt, json_mode=json_mode)]
        return "".join(chunks)
