"""
Console voice client for the relay server.

Records an utterance, ends it on silence, streams it to the server and plays
the spoken reply. Recording is disabled while the reply is playing.
"""

import asyncio
import base64
import binascii
import json
import logging
from typing import Callable, Optional

import websockets

from .audio import AudioRecorder, MicrophoneUnavailable
from .config import ClientConfig
from .player import PlaybackQueue, SoundDeviceSink
from .protocol import AI_AUDIO, ERROR, end_message, start_message
from .vad import VADConfig, VoiceActivityMonitor

logger = logging.getLogger(__name__)


class VoiceClient:
    """
    Voice conversation client.

    Status attributes mirror what a UI would show:
        connection_status: disconnected | connecting | connected | error
        recording_status: idle | recording | processing | playing
        status_message: human-readable last event
        volume: current input volume, 0-1
        can_record: False while a reply is playing

    Usage:
        client = VoiceClient(ClientConfig(url="ws://localhost:8080/ws"))
        await client.connect()
        await client.start_recording()   # ends by itself on silence
        await client.wait_for_reply()
        await client.disconnect()
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        recorder: Optional[AudioRecorder] = None,
        player: Optional[PlaybackQueue] = None,
        on_status: Optional[Callable[[str], None]] = None,
    ):
        self.config = config or ClientConfig()
        self.on_status = on_status

        self.connection_status = "disconnected"
        self.recording_status = "idle"
        self.status_message = "Ready to connect"
        self.volume = 0.0
        self.can_record = True

        self.recorder = recorder or AudioRecorder(self.config)
        self.player = player or PlaybackQueue(sink=SoundDeviceSink())
        self.player.on_playback_start = self._on_playback_start
        self.player.on_playback_end = self._on_playback_end

        self.monitor = VoiceActivityMonitor(
            level_source=lambda: self.recorder.volume,
            on_silence=self.stop_recording,
            on_volume=self._on_volume,
            config=VADConfig(
                volume_threshold=self.config.volume_threshold,
                silence_duration=self.config.silence_window,
                poll_interval=self.config.poll_interval,
            ),
        )

        self._ws = None
        self._receiver: Optional[asyncio.Task] = None
        self._reply_complete = False
        self._turn_finished: Optional[asyncio.Event] = None

    def _set_status(self, message: str):
        self.status_message = message
        logger.info(message)
        if self.on_status:
            self.on_status(message)

    @property
    def is_connected(self) -> bool:
        return self.connection_status == "connected" and self._ws is not None

    async def connect(self) -> bool:
        if self.is_connected:
            return True

        self.connection_status = "connecting"
        self._set_status("Connecting to server...")
        try:
            self._ws = await websockets.connect(self.config.url)
        except Exception as e:
            self._ws = None
            self.connection_status = "error"
            self._set_status(f"Connection error: {e}")
            return False

        self.connection_status = "connected"
        self._set_status("Connected to server")
        self._receiver = asyncio.create_task(self._receive_loop())
        return True

    async def disconnect(self):
        await self.stop_recording(send_end=False)
        self.player.stop()

        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()
        if self._receiver is not None:
            self._receiver.cancel()
            try:
                await self._receiver
            except asyncio.CancelledError:
                pass
            self._receiver = None

        self.connection_status = "disconnected"
        self._set_status("Disconnected from server")

    async def send(self, message: dict):
        if self._ws is None:
            raise ConnectionError("Not connected")
        await self._ws.send(json.dumps(message))

    async def start_recording(self) -> bool:
        """Start an utterance. Returns False if recording is not possible now."""
        if self.recording_status == "recording":
            return False
        if not self.can_record:
            self._set_status("Please wait for AI response to finish")
            return False
        if not self.is_connected:
            self._set_status("Please connect to server first")
            return False

        # Normally a no-op: can_record is only True once playback has ended
        self.player.stop()

        # The microphone must be open before the utterance is announced
        try:
            await self.recorder.open()
        except MicrophoneUnavailable as e:
            self._set_status(f"Failed to access microphone: {e}")
            return False

        self._reply_complete = False
        self._turn_finished = asyncio.Event()

        try:
            await self.send(start_message())
        except Exception:
            await self.recorder.stop()
            raise
        await self.recorder.start(self.send)

        self.recording_status = "recording"
        self._set_status("Recording... Speak now!")
        self.monitor.start()
        return True

    async def stop_recording(self, send_end: bool = True):
        """End the utterance and hand it to the server."""
        if self.recording_status != "recording":
            return
        self.recording_status = "processing"

        self.monitor.stop()
        await self.recorder.stop()
        self._set_status("Processing your speech...")

        if send_end and self._ws is not None:
            try:
                await self.send(end_message())
            except Exception as e:
                logger.error(f"Failed to send end of utterance: {e}")

    async def wait_for_reply(self, timeout: Optional[float] = None):
        """Wait until the reply has been played or the turn failed."""
        if self._turn_finished is None:
            return
        await asyncio.wait_for(self._turn_finished.wait(), timeout)

    async def _receive_loop(self):
        try:
            async for raw in self._ws:
                self.handle_message(raw)
        except websockets.ConnectionClosed:
            pass
        except Exception as e:
            logger.error(f"Receive loop failed: {e}")

        if self._ws is not None:
            self._ws = None
            self.connection_status = "disconnected"
            self._set_status("Disconnected from server")
            if self._turn_finished is not None:
                self._turn_finished.set()

    def handle_message(self, raw):
        """Handle one server message."""
        try:
            data = json.loads(raw)
        except (TypeError, json.JSONDecodeError):
            logger.warning(f"Ignoring non-JSON message: {raw!r}")
            return

        message_type = data.get("type")
        if message_type == AI_AUDIO:
            try:
                audio = base64.b64decode(data.get("chunk", ""), validate=True)
            except binascii.Error as e:
                logger.error(f"Invalid audio chunk: {e}")
                return
            done = bool(data.get("done"))
            logger.debug(f"Received AI audio chunk {data.get('index')} ({'final' if done else 'streaming'})")
            if done:
                self._reply_complete = True
            self.player.enqueue(audio)
        elif message_type == ERROR:
            self._set_status(f"Server error: {data.get('message', '')}")
            self.recording_status = "idle"
            self.can_record = True
            if self._turn_finished is not None:
                self._turn_finished.set()
        else:
            logger.debug(f"Ignoring message type: {message_type}")

    def _on_playback_start(self):
        self.recording_status = "playing"
        self.can_record = False
        self._set_status("Playing AI response...")

    def _on_playback_end(self):
        if self.recording_status == "playing":
            self.recording_status = "idle"
        self.can_record = True
        self._set_status("Ready to record")
        if self._reply_complete and self._turn_finished is not None:
            self._turn_finished.set()

    def _on_volume(self, volume: float):
        self.volume = volume

    async def run_conversation(self):
        """Interactive loop: press Enter to speak, 'q' to quit."""
        if not await self.connect():
            return

        try:
            while self.is_connected:
                line = await asyncio.to_thread(input, "Press Enter to speak (q to quit): ")
                if line.strip().lower() in {"q", "quit", "exit"}:
                    break
                if not await self.start_recording():
                    continue
                await self.wait_for_reply()
        finally:
            await self.disconnect()
