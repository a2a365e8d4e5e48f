import logging
from typing import Dict, Optional

import httpx

from .config import ProviderConfig

logger = logging.getLogger(__name__)


class WhisperAPITranscriber:
    """Transcribes a complete utterance through an OpenAI-compatible API."""

    def __init__(
        self,
        config: Optional[ProviderConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or ProviderConfig()
        self.base_url = self.config.base_url.rstrip("/")
        self.model = self.config.stt_model
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        if self.config.api_key:
            return {"Authorization": f"Bearer {self.config.api_key}"}
        return {}

    async def transcribe(self, audio: bytes, filename: str = "utterance.wav") -> str:
        """
        Transcribe an encoded audio file.

        Args:
            audio: Complete audio file contents (WAV)
            filename: Name sent with the upload; its extension tells the
                      service the container format
        """
        if not audio:
            return ""

        async with httpx.AsyncClient(timeout=self.config.timeout, transport=self._transport) as client:
            response = await client.post(
                f"{self.base_url}/v1/audio/transcriptions",
                headers=self._headers(),
                data={"model": self.model},
                files={"file": (filename, audio, "audio/wav")},
            )
            response.raise_for_status()
            data = response.json()
        return str(data.get("text", "")).strip()
