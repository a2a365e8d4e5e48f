import asyncio
import sys
from pathlib import Path
from typing import List, Optional

sys.path.append(str(Path(__file__).resolve().parents[1] / "src"))

from voice_relay.audio import pcm_to_wav


def speech_wav(text: str) -> bytes:
    """Tiny but valid WAV standing in for synthesized speech of text."""
    return pcm_to_wav(text.encode("utf-8").ljust(32, b"\0")[:32], sample_rate=8000)


class DummyTranscriber:
    def __init__(self, text: str = "hello there", error: Optional[Exception] = None) -> None:
        self.text = text
        self.error = error
        self.calls: List[bytes] = []
        self.filenames: List[str] = []

    async def transcribe(self, audio: bytes, filename: str = "utterance.wav") -> str:
        self.calls.append(audio)
        self.filenames.append(filename)
        if self.error:
            raise self.error
        return self.text


class BlockingTranscriber(DummyTranscriber):
    """Holds the turn open until release() is called."""

    def __init__(self, text: str = "hello there") -> None:
        super().__init__(text)
        self.released = asyncio.Event()

    def release(self):
        self.released.set()

    async def transcribe(self, audio: bytes, filename: str = "utterance.wav") -> str:
        await self.released.wait()
        return await super().transcribe(audio, filename)


class DummyGenerator:
    def __init__(self, parts: List[str], fail_after: Optional[int] = None) -> None:
        self.parts = list(parts)
        self.fail_after = fail_after
        self.prompts: List[str] = []

    async def stream_reply(self, system_prompt: str, user_text: str):
        self.prompts.append(user_text)
        for i, part in enumerate(self.parts):
            if self.fail_after is not None and i == self.fail_after:
                raise RuntimeError("generation failed")
            yield part


class DummySynthesizer:
    def __init__(self, fail_on: Optional[str] = None) -> None:
        self.fail_on = fail_on
        self.texts: List[str] = []

    async def synthesize(self, text: str, voice: Optional[str] = None) -> bytes:
        if self.fail_on is not None and self.fail_on in text:
            raise RuntimeError("synthesis failed")
        self.texts.append(text)
        return speech_wav(text)


class DummySink:
    """Audio sink recording what was played."""

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay
        self.played: List[bytes] = []
        self.stopped = 0

    async def play(self, audio: bytes):
        if audio == b"broken":
            raise ValueError("cannot decode")
        await asyncio.sleep(self.delay)
        self.played.append(audio)

    def stop(self):
        self.stopped += 1
