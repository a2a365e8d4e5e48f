"""
One conversational turn: transcribe -> generate -> chunk -> synthesize -> stream.

Stages run strictly in order. Synthesis of segment i completes and its audio
is sent before segment i+1 is requested, so the client receives segments in
reply order.
"""

import logging
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, Optional, Protocol

from .audio import pcm_to_wav
from .chunker import create_tts_segments
from .config import RelayConfig
from .protocol import ai_audio_message

logger = logging.getLogger(__name__)

SendFn = Callable[[dict], Awaitable[None]]


class Transcriber(Protocol):
    async def transcribe(self, audio: bytes, filename: str = ...) -> str: ...


class ReplyGenerator(Protocol):
    def stream_reply(self, system_prompt: str, user_text: str) -> AsyncIterator[str]: ...


class Synthesizer(Protocol):
    async def synthesize(self, text: str, voice: Optional[str] = None) -> bytes: ...


class TurnError(Exception):
    """A turn could not produce a spoken reply."""


class EmptyTranscriptError(TurnError):
    def __init__(self):
        super().__init__("No speech was recognized in the recording")


class EmptyReplyError(TurnError):
    def __init__(self):
        super().__init__("The assistant returned an empty reply")


@dataclass
class TurnStats:
    """Timings (seconds) and results of one turn."""
    transcript: str = ""
    reply: str = ""
    segments: int = 0
    audio_bytes_in: int = 0
    audio_bytes_out: int = 0
    transcription_time: float = 0.0
    generation_time: float = 0.0
    synthesis_time: float = 0.0

    @property
    def total_time(self) -> float:
        return self.transcription_time + self.generation_time + self.synthesis_time


class TurnPipeline:
    """
    Runs one finalized utterance through the provider services.

    Usage:
        pipeline = TurnPipeline(
            transcriber=WhisperAPITranscriber(providers),
            generator=LLMClient(providers),
            synthesizer=SpeechAPISynthesizer(providers),
            config=RelayConfig(),
        )
        stats = await pipeline.run(pcm_audio, websocket_send_json)
    """

    def __init__(
        self,
        transcriber: Transcriber,
        generator: ReplyGenerator,
        synthesizer: Synthesizer,
        config: Optional[RelayConfig] = None,
    ):
        self.transcriber = transcriber
        self.generator = generator
        self.synthesizer = synthesizer
        self.config = config or RelayConfig()

    async def run(self, audio: bytes, send: SendFn, turn_id: Optional[str] = None) -> TurnStats:
        """
        Process one utterance and stream the spoken reply through send.

        Args:
            audio: Raw 16-bit mono PCM of the whole utterance
            send: Coroutine delivering one JSON message to the client
            turn_id: Identifier used for logs and kept audio files

        Raises:
            Any stage failure. Nothing after the failing stage runs.
        """
        turn_id = turn_id or uuid.uuid4().hex
        stats = TurnStats(audio_bytes_in=len(audio))

        # 1. Transcribe
        t0 = time.monotonic()
        wav = pcm_to_wav(audio, sample_rate=self.config.sample_rate, channels=self.config.channels)
        self._keep_audio(turn_id, wav)
        transcript = (await self.transcriber.transcribe(wav, filename=f"{turn_id}.wav")).strip()
        stats.transcription_time = time.monotonic() - t0
        stats.transcript = transcript
        logger.info(f"[{turn_id}] Transcription done ({stats.transcription_time:.2f}s): {transcript!r}")
        if not transcript:
            raise EmptyTranscriptError()

        # 2-3. Generate; a failure mid-stream discards the partial reply
        t1 = time.monotonic()
        parts = []
        async for delta in self.generator.stream_reply(self.config.system_prompt, transcript):
            parts.append(delta)
        reply = "".join(parts).strip()
        stats.generation_time = time.monotonic() - t1
        stats.reply = reply
        logger.info(f"[{turn_id}] Reply done ({stats.generation_time:.2f}s): {reply!r}")

        # 4. Chunk
        segments = create_tts_segments(reply, self.config.max_segment_length)
        if not segments:
            raise EmptyReplyError()
        stats.segments = len(segments)
        logger.debug(f"[{turn_id}] Reply split into {len(segments)} segments: {[s.text for s in segments]}")

        # 5. Synthesize and stream, one segment at a time
        t2 = time.monotonic()
        for segment in segments:
            speech = await self.synthesizer.synthesize(segment.text)
            stats.audio_bytes_out += len(speech)
            await send(ai_audio_message(speech, index=segment.index, done=segment.is_last))
        stats.synthesis_time = time.monotonic() - t2

        logger.info(
            f"[{turn_id}] Turn complete: transcription {stats.transcription_time:.2f}s, "
            f"generation {stats.generation_time:.2f}s, synthesis + stream {stats.synthesis_time:.2f}s, "
            f"total {stats.total_time:.2f}s"
        )
        return stats

    def _keep_audio(self, turn_id: str, wav: bytes):
        if not self.config.keep_audio_dir:
            return
        try:
            directory = Path(self.config.keep_audio_dir)
            directory.mkdir(parents=True, exist_ok=True)
            path = directory / f"{turn_id}.wav"
            path.write_bytes(wav)
            logger.info(f"[{turn_id}] Saved audio: {path} ({len(wav)} bytes)")
        except OSError as e:
            logger.warning(f"[{turn_id}] Could not save audio: {e}")
