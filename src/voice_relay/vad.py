"""
Amplitude-based end-of-utterance detection for the voice client.

While recording, the monitor polls the current input volume at animation-frame
cadence. Once the volume has stayed below the threshold for the whole silence
window, it fires its end-of-utterance callback once and stops.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)


@dataclass
class VADConfig:
    """Silence detection configuration."""
    volume_threshold: float = 0.1  # Normalized volume, 0-1
    silence_duration: float = 1.5  # Seconds of silence before end-of-utterance
    poll_interval: float = 1 / 60  # Seconds between samples


@dataclass
class VADResult:
    """Result of one monitor tick."""
    volume: float
    is_silent: bool
    silence_elapsed: float  # Seconds the current silence has lasted
    is_speech_end: bool  # The silence window just elapsed


class VoiceActivityMonitor:
    """
    Watches an amplitude source and signals the end of an utterance.

    Usage:
        monitor = VoiceActivityMonitor(
            level_source=lambda: recorder.volume,
            on_silence=stop_recording,
        )
        monitor.start()   # when recording starts
        monitor.stop()    # when recording stops for any other reason
    """

    def __init__(
        self,
        level_source: Callable[[], float],
        on_silence: Callable[[], Union[Awaitable[None], None]],
        on_volume: Optional[Callable[[float], None]] = None,
        config: Optional[VADConfig] = None,
    ):
        self.level_source = level_source
        self.on_silence = on_silence
        self.on_volume = on_volume
        self.config = config or VADConfig()

        self.volume = 0.0
        self._silence_start: Optional[float] = None
        self._triggered = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        """Begin polling. Must be called from a running event loop."""
        if self.running:
            return
        self._reset_state()
        self._task = asyncio.create_task(self._poll())
        logger.debug("Volume monitoring started")

    def stop(self):
        """Stop polling. No callback fires after this returns."""
        task = self._task
        self._task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._silence_start = None
        self.volume = 0.0
        self._publish(0.0)

    def tick(self, volume: float, now: float) -> VADResult:
        """
        Update the silence state with one volume sample.

        Args:
            volume: Normalized volume in [0, 1]
            now: Monotonic time of the sample, in seconds
        """
        volume = min(max(volume, 0.0), 1.0)
        self.volume = volume

        if volume >= self.config.volume_threshold:
            # Speech cancels any pending silence
            self._silence_start = None
            return VADResult(volume=volume, is_silent=False, silence_elapsed=0.0, is_speech_end=False)

        if self._silence_start is None:
            self._silence_start = now
        elapsed = now - self._silence_start

        is_end = not self._triggered and elapsed >= self.config.silence_duration
        if is_end:
            self._triggered = True
            logger.info(f"Silence detected ({elapsed:.2f}s), ending recording")
        return VADResult(volume=volume, is_silent=True, silence_elapsed=elapsed, is_speech_end=is_end)

    async def _poll(self):
        loop = asyncio.get_running_loop()
        while True:
            try:
                volume = float(self.level_source())
            except Exception as e:
                logger.warning(f"Volume source failed: {e}")
                volume = 0.0

            result = self.tick(volume, loop.time())
            self._publish(result.volume)

            if result.is_speech_end:
                outcome = self.on_silence()
                if inspect.isawaitable(outcome):
                    await outcome
                return

            await asyncio.sleep(self.config.poll_interval)

    def _publish(self, volume: float):
        if self.on_volume is None:
            return
        try:
            self.on_volume(volume)
        except Exception as e:
            logger.warning(f"Volume listener failed: {e}")

    def _reset_state(self):
        self.volume = 0.0
        self._silence_start = None
        self._triggered = False
