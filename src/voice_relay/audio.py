"""
Audio helpers shared by the relay server and the voice client.

- WAV wrapping/unwrapping of raw 16-bit PCM
- Frequency-domain volume measurement for silence detection
- Streaming microphone capture in fixed-duration slices
"""

import asyncio
import io
import logging
import wave
from typing import Awaitable, Callable, Optional, Tuple

import numpy as np

from .config import ClientConfig
from .protocol import chunk_message

logger = logging.getLogger(__name__)


class MicrophoneUnavailable(RuntimeError):
    """The input device could not be opened."""


def pcm_to_wav(pcm: bytes, sample_rate: int = 16000, channels: int = 1, sample_width: int = 2) -> bytes:
    """Wrap raw little-endian PCM in a WAV container."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(sample_width)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm)
    return buffer.getvalue()


def decode_wav(data: bytes) -> Tuple[np.ndarray, int]:
    """
    Decode a 16-bit PCM WAV file.

    Returns:
        (samples, sample_rate) with float32 samples in [-1, 1], shaped
        (frames, channels)
    """
    with wave.open(io.BytesIO(data), "rb") as wf:
        if wf.getsampwidth() != 2:
            raise ValueError(f"Unsupported sample width: {wf.getsampwidth()} bytes")
        channels = wf.getnchannels()
        sample_rate = wf.getframerate()
        # Streamed WAV headers may carry a bogus frame count, read everything
        frames = wf.readframes(wf.getnframes() or 2 ** 31 - 1)

    audio = np.frombuffer(frames, dtype=np.int16).astype(np.float32) / 32768.0
    usable = len(audio) - len(audio) % channels
    return audio[:usable].reshape(-1, channels), sample_rate


def frequency_volume(
    samples: np.ndarray,
    fft_size: int = 256,
    min_db: float = -100.0,
    max_db: float = -30.0,
) -> float:
    """
    Average spectral magnitude of the latest frame, normalized to [0, 1].

    Matches the scale of a browser AnalyserNode's byte frequency data
    divided by 255: magnitudes in dB mapped linearly from [min_db, max_db].
    """
    if samples.size == 0:
        return 0.0

    if samples.dtype == np.int16:
        samples = samples.astype(np.float32) / 32768.0
    elif samples.dtype != np.float32:
        samples = samples.astype(np.float32)

    # Mix down to mono
    if samples.ndim > 1:
        samples = samples.mean(axis=1)

    frame = samples[-fft_size:]
    if len(frame) < fft_size:
        frame = np.pad(frame, (fft_size - len(frame), 0))

    spectrum = np.abs(np.fft.rfft(frame * np.blackman(fft_size)))[: fft_size // 2] / fft_size
    with np.errstate(divide="ignore"):
        db = 20 * np.log10(spectrum)
    scaled = np.clip((db - min_db) / (max_db - min_db), 0.0, 1.0)
    return float(np.mean(scaled))


class AudioRecorder:
    """
    Streams microphone audio as base64 chunk messages.

    Audio is captured as 16-bit mono PCM. Every completed slice (100 ms by
    default) is sent as soon as it is available; nothing is held back until
    the utterance ends.

    Opening the microphone and sending are separate steps, so a caller can
    announce the utterance only once the device is known to work. Slices
    captured in between are queued and sent first.

    Usage:
        recorder = AudioRecorder(config)
        await recorder.open()                 # may raise MicrophoneUnavailable
        await send({"type": "user_audio_start"})
        await recorder.start(websocket_send_json)
        ...
        await recorder.stop()
    """

    def __init__(self, config: Optional[ClientConfig] = None):
        self.config = config or ClientConfig()
        samples_per_slice = int(self.config.sample_rate * self.config.slice_ms / 1000)
        self.slice_bytes = samples_per_slice * 2 * self.config.channels

        self.volume = 0.0
        self._stream = None
        self._pending = bytearray()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue] = None
        self._sender_task: Optional[asyncio.Task] = None
        self._chunks_sent = 0

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    @property
    def is_recording(self) -> bool:
        return self._sender_task is not None

    async def open(self):
        """Open the microphone. Captured audio is queued until start()."""
        if self.is_open:
            return

        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._pending = bytearray()
        self._chunks_sent = 0
        self.volume = 0.0

        try:
            stream = self._open_stream()
            stream.start()
        except Exception as e:
            logger.error(f"Failed to open microphone: {e}")
            self._queue = None
            raise MicrophoneUnavailable(str(e)) from e

        self._stream = stream
        logger.debug("Microphone opened")

    async def start(self, send: Callable[[dict], Awaitable[None]]):
        """Begin streaming slices through send, opening the microphone if needed."""
        if self.is_recording:
            return
        if not self.is_open:
            await self.open()

        self._sender_task = asyncio.create_task(self._send_loop(send))
        logger.info(f"Recording started ({self.config.slice_ms} ms slices)")

    async def stop(self):
        """Close the microphone, flush the partial slice and wait for sends."""
        if not self.is_open and not self.is_recording:
            return

        if self._stream is not None:
            try:
                self._stream.stop()
                self._stream.close()
            except Exception as e:
                logger.warning(f"Error closing input stream: {e}")
            self._stream = None

        if self._sender_task is None:
            # Opened but never started: nothing may be sent
            self._queue = None
            self._pending = bytearray()
            self.volume = 0.0
            logger.debug("Microphone closed before recording started")
            return

        # Let blocks already handed over by the callback land first
        await asyncio.sleep(0)

        if self._pending:
            self._queue.put_nowait(bytes(self._pending))
            self._pending = bytearray()
        self._queue.put_nowait(None)

        await self._sender_task
        self._sender_task = None
        self._queue = None
        self.volume = 0.0
        logger.info(f"Recording stopped after {self._chunks_sent} chunks")

    def _open_stream(self):
        import sounddevice as sd
        return sd.RawInputStream(
            samplerate=self.config.sample_rate,
            blocksize=self.config.analysis_frame,
            channels=self.config.channels,
            dtype="int16",
            callback=self._callback,
        )

    def _callback(self, indata, frames, time_info, status):
        """sounddevice callback, runs on the PortAudio thread."""
        if status:
            logger.debug(f"Input stream status: {status}")
        self._loop.call_soon_threadsafe(self.feed, bytes(indata))

    def feed(self, data: bytes):
        """Consume captured PCM: update volume and queue completed slices."""
        if self._queue is None:
            return

        samples = np.frombuffer(data, dtype=np.int16)
        if samples.size:
            self.volume = frequency_volume(samples, fft_size=self.config.analysis_frame)

        self._pending.extend(data)
        while len(self._pending) >= self.slice_bytes:
            piece = bytes(self._pending[:self.slice_bytes])
            del self._pending[:self.slice_bytes]
            self._queue.put_nowait(piece)

    async def _send_loop(self, send: Callable[[dict], Awaitable[None]]):
        while True:
            piece = await self._queue.get()
            if piece is None:
                break
            try:
                await send(chunk_message(piece))
                self._chunks_sent += 1
            except Exception as e:
                logger.warning(f"Dropping audio chunk, send failed: {e}")
