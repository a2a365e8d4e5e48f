"""
Wire protocol for the voice relay websocket.

Client -> server:
    {"type": "user_audio_start"}
    {"type": "user_audio_chunk", "chunk": "<base64 audio>"}
    {"type": "user_audio_end"}

Server -> client:
    {"type": "ai_audio", "chunk": "<base64 audio>", "done": bool, "index": int}
    {"type": "error", "message": "..."}
"""

import base64
import binascii
from typing import Literal, Optional

from pydantic import BaseModel

USER_AUDIO_START = "user_audio_start"
USER_AUDIO_CHUNK = "user_audio_chunk"
USER_AUDIO_END = "user_audio_end"
AI_AUDIO = "ai_audio"
ERROR = "error"


class ClientMessage(BaseModel):
    type: Literal["user_audio_start", "user_audio_chunk", "user_audio_end"]
    chunk: Optional[str] = None

    def audio(self) -> bytes:
        """Decode the base64 chunk payload (empty when absent)."""
        if not self.chunk:
            return b""
        try:
            return base64.b64decode(self.chunk, validate=True)
        except binascii.Error as e:
            raise ValueError(f"Invalid base64 audio chunk: {e}") from e


class AudioSegmentMessage(BaseModel):
    type: Literal["ai_audio"] = AI_AUDIO
    chunk: str
    done: bool
    index: int = 0


class ErrorMessage(BaseModel):
    type: Literal["error"] = ERROR
    message: str


def encode_audio(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def start_message() -> dict:
    return {"type": USER_AUDIO_START}


def chunk_message(data: bytes) -> dict:
    return {"type": USER_AUDIO_CHUNK, "chunk": encode_audio(data)}


def end_message() -> dict:
    return {"type": USER_AUDIO_END}


def ai_audio_message(data: bytes, index: int, done: bool) -> dict:
    return AudioSegmentMessage(chunk=encode_audio(data), done=done, index=index).model_dump()


def error_message(message: str) -> dict:
    return ErrorMessage(message=message).model_dump()
