"""
Sequential playback of synthesized reply segments on the voice client.
"""

import asyncio
import logging
from collections import deque
from typing import Callable, Deque, Optional

from .audio import decode_wav

logger = logging.getLogger(__name__)


class AudioSink:
    """Output device interface for the playback queue."""

    async def play(self, audio: bytes):  # pragma: no cover - interface
        """Decode and play one audio segment, returning when it has finished."""
        raise NotImplementedError

    def stop(self):  # optional
        """Interrupt the segment currently playing."""
        pass


class SoundDeviceSink(AudioSink):
    """Plays WAV segments on the default output device."""

    def __init__(self, device=None):
        self.device = device

    async def play(self, audio: bytes):
        samples, sample_rate = decode_wav(audio)
        if not len(samples):
            return
        await asyncio.to_thread(self._play_blocking, samples, sample_rate)

    def _play_blocking(self, samples, sample_rate: int):
        import sounddevice as sd
        sd.play(samples, samplerate=sample_rate, device=self.device)
        sd.wait()

    def stop(self):
        import sounddevice as sd
        sd.stop()


class PlaybackQueue:
    """
    FIFO of audio segments played back to back.

    `on_playback_start` fires once each time the queue goes from idle to
    playing; `on_playback_end` fires once when it drains or is stopped while
    playing.

    Usage:
        player = PlaybackQueue(
            sink=SoundDeviceSink(),
            on_playback_start=lambda: print("playing"),
            on_playback_end=lambda: print("done"),
        )
        player.enqueue(segment_bytes)
    """

    def __init__(
        self,
        sink: Optional[AudioSink] = None,
        on_playback_start: Optional[Callable[[], None]] = None,
        on_playback_end: Optional[Callable[[], None]] = None,
    ):
        self.sink = sink or SoundDeviceSink()
        self.on_playback_start = on_playback_start
        self.on_playback_end = on_playback_end

        self._queue: Deque[bytes] = deque()
        self._playing = False
        self._task: Optional[asyncio.Task] = None
        self._generation = 0

    @property
    def is_playing(self) -> bool:
        return self._playing

    @property
    def queue_length(self) -> int:
        """Segments waiting behind the one currently playing."""
        return len(self._queue)

    def enqueue(self, audio: bytes):
        """Queue a segment; starts playback if idle. Needs a running loop."""
        self._queue.append(audio)
        logger.debug(f"Queued audio segment (queue size: {len(self._queue)})")

        if not self._playing:
            self._playing = True
            self._notify(self.on_playback_start)
            logger.info("Starting audio playback")
            self._task = asyncio.create_task(self._drain(self._generation))

    def stop(self):
        """Halt playback and drop queued segments. No-op while idle."""
        self._queue.clear()
        if not self._playing:
            return

        logger.info("Stopping playback and clearing queue")
        self._generation += 1
        self._playing = False

        try:
            self.sink.stop()
        except Exception as e:
            logger.warning(f"Failed to stop audio output: {e}")

        task = self._task
        self._task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

        self._notify(self.on_playback_end)

    async def wait_idle(self):
        """Wait until the current drain finishes or is cancelled."""
        task = self._task
        if task is None:
            return
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.cancelled():
                raise

    async def _drain(self, generation: int):
        while self._queue and generation == self._generation:
            audio = self._queue.popleft()
            logger.debug(f"Playing audio segment ({len(self._queue)} remaining)")
            try:
                await self.sink.play(audio)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Failed to play audio segment: {e}")

        if generation != self._generation:
            return

        self._playing = False
        self._task = None
        logger.info("Audio queue finished")
        self._notify(self.on_playback_end)

    def _notify(self, callback: Optional[Callable[[], None]]):
        if callback is None:
            return
        try:
            callback()
        except Exception as e:
            logger.warning(f"Playback listener failed: {e}")
