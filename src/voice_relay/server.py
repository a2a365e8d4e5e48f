"""
Websocket voice relay server.

Each websocket connection gets its own RelayConnection with its own
UtteranceSession. Connections share nothing but the pipeline, which holds no
per-turn state.
"""

import asyncio
import logging
import time
import uuid
from typing import Dict, Optional, Set

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from .config import RelayConfig
from .pipeline import TurnPipeline
from .protocol import (
    USER_AUDIO_CHUNK,
    USER_AUDIO_END,
    USER_AUDIO_START,
    ClientMessage,
    error_message,
)
from .session import SessionState, UtteranceSession

logger = logging.getLogger(__name__)


class ConnectionClosed(Exception):
    """The client is gone; nothing more can be sent."""


class RelayConnection:
    """
    One client connection.

    Owns the connection's UtteranceSession and the task processing its
    current turn. Turns run in the background so that messages arriving
    meanwhile still reach the session and its PROCESSING guard.
    """

    def __init__(
        self,
        websocket: WebSocket,
        pipeline: TurnPipeline,
        config: RelayConfig,
        connection_id: Optional[str] = None,
    ):
        self.websocket = websocket
        self.pipeline = pipeline
        self.config = config
        self.connection_id = connection_id or uuid.uuid4().hex[:8]

        self.session = UtteranceSession(
            min_utterance_bytes=config.min_utterance_bytes,
            connection_id=self.connection_id,
        )
        self.created_at = time.time()
        self.last_activity = time.time()
        self.closed = False
        self._turns: Set[asyncio.Task] = set()

    async def send(self, message: dict):
        if self.closed:
            raise ConnectionClosed(f"Connection {self.connection_id} is closed")
        try:
            await self.websocket.send_json(message)
        except Exception as e:
            self.closed = True
            raise ConnectionClosed(str(e)) from e

    async def handle_text(self, data: str):
        """Dispatch one client message."""
        self.last_activity = time.time()
        try:
            message = ClientMessage.model_validate_json(data)
        except ValidationError as e:
            logger.warning(f"[{self.connection_id}] Ignoring invalid message: {e.errors()[:1]}")
            return

        if message.type == USER_AUDIO_START:
            self.session.start()
        elif message.type == USER_AUDIO_CHUNK:
            try:
                chunk = message.audio()
            except ValueError as e:
                logger.warning(f"[{self.connection_id}] {e}")
                return
            self.session.append(chunk)
        elif message.type == USER_AUDIO_END:
            audio = self.session.finish()
            if audio is not None:
                task = asyncio.create_task(self._run_turn(audio, self.session.session_id))
                self._turns.add(task)
                task.add_done_callback(self._turns.discard)

    async def _run_turn(self, audio: bytes, turn_id: Optional[str]):
        try:
            await self.pipeline.run(audio, self.send, turn_id=turn_id)
        except ConnectionClosed:
            logger.info(f"[{self.connection_id}] Client went away during turn {turn_id}")
        except Exception as e:
            logger.error(f"[{self.connection_id}] Turn {turn_id} failed: {e}")
            await self._report_error(str(e) or type(e).__name__)
        finally:
            self.session.complete()

    async def _report_error(self, text: str):
        try:
            await self.send(error_message(text))
        except ConnectionClosed:
            logger.info(f"[{self.connection_id}] Could not report error, connection closed")

    async def wait_for_turns(self):
        """Wait for turns still in flight (used by tests and shutdown)."""
        if self._turns:
            await asyncio.gather(*list(self._turns), return_exceptions=True)

    def close(self):
        """Connection teardown. A running turn finishes on its own."""
        self.closed = True
        self.session.close()

    @property
    def turn_in_progress(self) -> bool:
        return bool(self._turns)


class VoiceRelayServer:
    """
    Voice relay server.

    Usage:
        server = VoiceRelayServer(pipeline, config)
        server.mount(app)
    """

    def __init__(self, pipeline: TurnPipeline, config: Optional[RelayConfig] = None):
        self.config = config or RelayConfig()
        self.pipeline = pipeline
        self.connections: Dict[str, RelayConnection] = {}

    def mount(self, app: FastAPI, prefix: str = ""):
        """
        Mount relay routes on a FastAPI app.

        Adds:
        - WS  {prefix}/ws - audio relay
        - GET {prefix}/health - liveness
        - GET {prefix}/status - connection counts and settings
        """

        @app.websocket(f"{prefix}/ws")
        async def relay_websocket(websocket: WebSocket):
            await self.serve(websocket)

        @app.get(f"{prefix}/health")
        async def health():
            return {"status": "ok", "service": "voice-relay"}

        @app.get(f"{prefix}/status")
        async def status():
            return {
                "active_connections": len(self.connections),
                "processing": sum(
                    1 for c in self.connections.values()
                    if c.session.state is SessionState.PROCESSING
                ),
                "config": {
                    "sample_rate": self.config.sample_rate,
                    "min_utterance_bytes": self.config.min_utterance_bytes,
                    "max_segment_length": self.config.max_segment_length,
                    "llm_provider": self.config.providers.llm_provider,
                    "llm_model": self.config.providers.llm_model,
                    "tts_voice": self.config.providers.tts_voice,
                },
            }

    async def serve(self, websocket: WebSocket):
        """Run one connection until the client disconnects."""
        await websocket.accept()
        connection = RelayConnection(websocket, self.pipeline, self.config)
        self.connections[connection.connection_id] = connection
        logger.info(f"[{connection.connection_id}] Client connected")

        try:
            while True:
                data = await websocket.receive_text()
                await connection.handle_text(data)
        except WebSocketDisconnect:
            logger.info(f"[{connection.connection_id}] Client disconnected")
        except Exception as e:
            logger.error(f"[{connection.connection_id}] Connection error: {e}")
        finally:
            connection.close()
            self.connections.pop(connection.connection_id, None)


def create_app(pipeline: TurnPipeline, config: Optional[RelayConfig] = None) -> FastAPI:
    """Build the FastAPI app serving the relay."""
    config = config or RelayConfig()
    app = FastAPI(
        title="Voice Relay",
        description="Turn-based voice conversation relay",
        version="0.1.0",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    server = VoiceRelayServer(pipeline, config)
    server.mount(app)
    app.state.relay = server
    return app
