"""
Configuration for the voice relay server, provider clients and voice client.

Every setting has a default; `from_env()` applies environment overrides.
"""

import os
from dataclasses import dataclass, field
from typing import Optional


DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful voice assistant. Keep responses concise and conversational."
)


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return float(value)


@dataclass
class ProviderConfig:
    """Transcription, generation and synthesis service settings."""
    api_key: Optional[str] = None
    base_url: str = "https://api.openai.com"

    # Generation can target an OpenAI-compatible API or a local Ollama
    llm_provider: str = "openai"
    llm_base_url: Optional[str] = None
    llm_model: str = "gpt-3.5-turbo"

    stt_model: str = "whisper-1"

    tts_model: str = "tts-1"
    tts_voice: str = "nova"
    tts_format: str = "wav"

    timeout: float = 120.0

    @classmethod
    def from_env(cls) -> "ProviderConfig":
        defaults = cls()
        provider = os.environ.get("LLM_PROVIDER", defaults.llm_provider).lower()
        llm_base_url = os.environ.get("LLM_API_URL")
        if not llm_base_url and provider == "ollama":
            llm_base_url = os.environ.get("OLLAMA_HOST", "http://localhost:11434")
        return cls(
            api_key=os.environ.get("OPENAI_API_KEY"),
            base_url=os.environ.get("OPENAI_BASE_URL", defaults.base_url).rstrip("/"),
            llm_provider=provider,
            llm_base_url=llm_base_url,
            llm_model=os.environ.get("LLM_MODEL", defaults.llm_model),
            stt_model=os.environ.get("STT_MODEL", defaults.stt_model),
            tts_model=os.environ.get("TTS_MODEL", defaults.tts_model),
            tts_voice=os.environ.get("TTS_VOICE", defaults.tts_voice),
            tts_format=os.environ.get("TTS_FORMAT", defaults.tts_format),
            timeout=_env_float("PROVIDER_TIMEOUT", defaults.timeout),
        )


@dataclass
class RelayConfig:
    """Voice relay server configuration."""
    # Network
    host: str = "0.0.0.0"
    port: int = 8080
    allowed_origins: list = field(default_factory=lambda: ["*"])

    # Uplink audio format (raw 16-bit mono PCM)
    sample_rate: int = 16000
    channels: int = 1

    # Buffers under this size are treated as noise, not an utterance
    min_utterance_bytes: int = 1000

    # TTS segmentation
    max_segment_length: int = 50

    system_prompt: str = DEFAULT_SYSTEM_PROMPT

    # Directory to keep finalized utterances as WAV files (debugging)
    keep_audio_dir: Optional[str] = None

    providers: ProviderConfig = field(default_factory=ProviderConfig)

    @classmethod
    def from_env(cls) -> "RelayConfig":
        defaults = cls()
        origins = os.environ.get("RELAY_ALLOWED_ORIGINS")
        return cls(
            host=os.environ.get("RELAY_HOST", defaults.host),
            port=_env_int("RELAY_PORT", defaults.port),
            allowed_origins=(
                [o.strip() for o in origins.split(",") if o.strip()]
                if origins else defaults.allowed_origins
            ),
            sample_rate=_env_int("RELAY_SAMPLE_RATE", defaults.sample_rate),
            min_utterance_bytes=_env_int("RELAY_MIN_UTTERANCE_BYTES", defaults.min_utterance_bytes),
            max_segment_length=_env_int("RELAY_MAX_SEGMENT_LENGTH", defaults.max_segment_length),
            system_prompt=os.environ.get("RELAY_SYSTEM_PROMPT", defaults.system_prompt),
            keep_audio_dir=os.environ.get("RELAY_KEEP_AUDIO_DIR") or None,
            providers=ProviderConfig.from_env(),
        )


@dataclass
class ClientConfig:
    """Voice client configuration."""
    url: str = "ws://localhost:8080/ws"

    # Capture
    sample_rate: int = 16000
    channels: int = 1
    slice_ms: int = 100  # Uplink chunk duration
    analysis_frame: int = 256  # Samples per volume measurement

    # Silence detection
    volume_threshold: float = 0.1  # Normalized 0-1
    silence_window: float = 1.5  # Seconds below threshold to end utterance
    poll_interval: float = 1 / 60  # Animation-frame cadence

    @classmethod
    def from_env(cls) -> "ClientConfig":
        defaults = cls()
        return cls(
            url=os.environ.get("RELAY_URL", defaults.url),
            sample_rate=_env_int("RELAY_SAMPLE_RATE", defaults.sample_rate),
            slice_ms=_env_int("CLIENT_SLICE_MS", defaults.slice_ms),
            volume_threshold=_env_float("CLIENT_VOLUME_THRESHOLD", defaults.volume_threshold),
            silence_window=_env_float("CLIENT_SILENCE_WINDOW", defaults.silence_window),
        )
