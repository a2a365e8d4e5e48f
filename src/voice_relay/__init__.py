"""
Voice Relay - turn-based voice conversation over a websocket.

- Client records an utterance and ends it on silence
- Audio streams to the server in 100 ms chunks
- Server transcribes, generates a reply and splits it into short segments
- Each segment is synthesized and streamed back in order
- Client plays the segments back to back
"""

from .chunker import TTSSegment, chunk_text, create_tts_segments
from .client import VoiceClient
from .pipeline import TurnPipeline
from .player import PlaybackQueue
from .server import VoiceRelayServer, create_app
from .session import SessionState, UtteranceSession
from .vad import VoiceActivityMonitor

__all__ = [
    "TTSSegment",
    "chunk_text",
    "create_tts_segments",
    "VoiceClient",
    "TurnPipeline",
    "PlaybackQueue",
    "VoiceRelayServer",
    "create_app",
    "SessionState",
    "UtteranceSession",
    "VoiceActivityMonitor",
]
