import logging
from typing import Dict, Optional

import httpx

from .config import ProviderConfig

logger = logging.getLogger(__name__)


class SpeechAPISynthesizer:
    """Synthesizes one text segment into one audio buffer."""

    def __init__(
        self,
        config: Optional[ProviderConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or ProviderConfig()
        self.base_url = self.config.base_url.rstrip("/")
        self.model = self.config.tts_model
        self.voice = self.config.tts_voice
        self.response_format = self.config.tts_format
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        headers: Dict[str, str] = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    async def synthesize(self, text: str, voice: Optional[str] = None) -> bytes:
        if not text.strip():
            return b""

        payload = {
            "model": self.model,
            "voice": voice or self.voice,
            "input": text,
            "response_format": self.response_format,
        }
        async with httpx.AsyncClient(timeout=self.config.timeout, transport=self._transport) as client:
            response = await client.post(
                f"{self.base_url}/v1/audio/speech",
                headers=self._headers(),
                json=payload,
            )
            response.raise_for_status()
            audio = response.content
        logger.debug(f"Synthesized {len(text)} chars into {len(audio)} bytes")
        return audio
