"""
Per-connection utterance session.

Each websocket connection owns exactly one UtteranceSession. It collects the
audio chunks of one utterance and guards against overlapping processing:

    IDLE --start--> CAPTURING --end--> PROCESSING --complete--> IDLE

Signals that do not match the current state are logged and ignored.
"""

import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """State of the connection's current utterance."""
    IDLE = "idle"
    CAPTURING = "capturing"
    PROCESSING = "processing"


@dataclass
class SessionStats:
    """Counters for one connection."""
    utterances_started: int = 0
    chunks_received: int = 0
    chunks_ignored: int = 0
    utterances_discarded: int = 0
    turns_processed: int = 0


class UtteranceSession:
    """
    Buffers one utterance at a time for a single connection.

    Usage:
        session = UtteranceSession(min_utterance_bytes=1000)

        session.start()
        session.append(chunk)
        audio = session.finish()
        if audio is not None:
            try:
                await pipeline.run(audio, send)
            finally:
                session.complete()
    """

    def __init__(self, min_utterance_bytes: int = 1000, connection_id: Optional[str] = None):
        self.min_utterance_bytes = min_utterance_bytes
        self.connection_id = connection_id or uuid.uuid4().hex[:8]

        self.session_id: Optional[str] = None
        self.state = SessionState.IDLE
        self._chunks: List[bytes] = []
        self._stats = SessionStats()

    def start(self) -> bool:
        """Begin a new utterance. No-op unless idle."""
        if self.state is not SessionState.IDLE:
            logger.info(
                f"[{self.connection_id}] Session {self.session_id} is {self.state.value}, ignoring start"
            )
            return False

        self.session_id = uuid.uuid4().hex
        self._chunks = []
        self.state = SessionState.CAPTURING
        self._stats.utterances_started += 1
        logger.info(f"[{self.connection_id}] Started audio session {self.session_id}")
        return True

    def append(self, chunk: bytes) -> bool:
        """Append an audio chunk to the capturing utterance."""
        if self.state is not SessionState.CAPTURING:
            self._stats.chunks_ignored += 1
            logger.warning(
                f"[{self.connection_id}] Received chunk while {self.state.value}, ignoring"
            )
            return False

        if chunk:
            self._chunks.append(chunk)
            self._stats.chunks_received += 1
            logger.debug(
                f"[{self.connection_id}] Received chunk {len(self._chunks)} (session: {self.session_id})"
            )
        return True

    def finish(self) -> Optional[bytes]:
        """
        Finalize the capturing utterance.

        Returns:
            The concatenated audio, with the session now PROCESSING, or None
            when there is nothing to process (no active session, already
            processing, or a buffer too small to be speech).
        """
        if self.state is SessionState.IDLE:
            logger.warning(f"[{self.connection_id}] Received end without session start")
            return None
        if self.state is SessionState.PROCESSING:
            logger.info(f"[{self.connection_id}] Already processing {self.session_id}, skipping end")
            return None

        audio = b"".join(self._chunks)
        if len(audio) < self.min_utterance_bytes:
            logger.warning(
                f"[{self.connection_id}] Utterance too small ({len(audio)} bytes), skipping"
            )
            self._stats.utterances_discarded += 1
            self._reset()
            return None

        self.state = SessionState.PROCESSING
        logger.info(
            f"[{self.connection_id}] Processing {len(self._chunks)} chunks "
            f"({len(audio)} bytes) for session {self.session_id}"
        )
        return audio

    def complete(self):
        """Release the utterance after processing, whatever the outcome."""
        if self.state is SessionState.PROCESSING:
            self._stats.turns_processed += 1
        self._reset()

    def close(self):
        """Connection teardown: drop anything buffered and go idle."""
        if self.state is not SessionState.IDLE:
            logger.info(
                f"[{self.connection_id}] Connection closed while {self.state.value}, "
                f"discarding {len(self._chunks)} chunks"
            )
        self._reset()

    def _reset(self):
        self._chunks = []
        self.session_id = None
        self.state = SessionState.IDLE

    @property
    def chunks(self) -> List[bytes]:
        """Buffered chunks of the current utterance."""
        return list(self._chunks)

    @property
    def buffered_bytes(self) -> int:
        return sum(len(c) for c in self._chunks)

    @property
    def is_processing(self) -> bool:
        """Whether an utterance is being processed."""
        return self.state is SessionState.PROCESSING

    @property
    def stats(self) -> SessionStats:
        return self._stats
