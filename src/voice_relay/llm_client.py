import json
import logging
from typing import AsyncGenerator, Dict, List, Optional

import httpx

from .config import ProviderConfig

logger = logging.getLogger(__name__)


class LLMClient:
    """Streaming chat client for OpenAI-compatible APIs or Ollama."""

    def __init__(
        self,
        config: Optional[ProviderConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config or ProviderConfig()
        self.provider = self.config.llm_provider.lower()
        self.model = self.config.llm_model
        self.api_key = self.config.api_key
        self._transport = transport

        base_url = self.config.llm_base_url
        if not base_url:
            base_url = "http://localhost:11434" if self.provider == "ollama" else self.config.base_url
        self.base_url = base_url.rstrip("/")

    def _headers(self) -> Dict[str, str]:
        headers: Dict[str, str] = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.config.timeout, transport=self._transport)

    async def stream_reply(self, system_prompt: str, user_text: str) -> AsyncGenerator[str, None]:
        """Yield reply fragments for a single user message."""
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_text},
        ]
        async for delta in self.stream_chat(messages):
            yield delta

    async def stream_chat(
        self,
        messages: List[Dict[str, str]],
        model_override: Optional[str] = None,
    ) -> AsyncGenerator[str, None]:
        model = model_override or self.model
        if self.provider == "ollama":
            stream = self._stream_ollama(messages, model)
        else:
            stream = self._stream_openai(messages, model)
        async for delta in stream:
            yield delta

    async def _stream_ollama(self, messages: List[Dict[str, str]], model: str) -> AsyncGenerator[str, None]:
        payload = {
            "model": model,
            "messages": messages,
            "stream": True,
        }
        async with self._client() as client:
            async with client.stream(
                "POST",
                f"{self.base_url}/api/chat",
                headers=self._headers(),
                json=payload,
            ) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    try:
                        data = json.loads(line)
                    except json.JSONDecodeError:
                        logger.debug(f"Skipping malformed Ollama line: {line!r}")
                        continue
                    if data.get("error"):
                        raise RuntimeError(f"Ollama error: {data['error']}")
                    content = data.get("message", {}).get("content", "")
                    if content:
                        yield content
                    if data.get("done"):
                        break

    async def _stream_openai(self, messages: List[Dict[str, str]], model: str) -> AsyncGenerator[str, None]:
        payload = {
            "model": model,
            "messages": messages,
            "stream": True,
        }
        async with self._client() as client:
            async with client.stream(
                "POST",
                f"{self.base_url}/v1/chat/completions",
                headers=self._headers(),
                json=payload,
            ) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    if not line:
                        continue
                    if line.startswith("data:"):
                        line = line[len("data:"):].strip()
                    if not line:
                        continue
                    if line == "[DONE]":
                        break
                    try:
                        event = json.loads(line)
                    except json.JSONDecodeError:
                        logger.debug(f"Skipping malformed stream line: {line!r}")
                        continue
                    choices = event.get("choices") or []
                    if not choices:
                        continue
                    delta = choices[0].get("delta", {}).get("content") or ""
                    if delta:
                        yield delta
