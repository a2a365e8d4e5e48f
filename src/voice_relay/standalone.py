"""
Standalone entry points for the voice relay.

Run the server with:
    voice-relay-server --port 8080
    (or: python -m voice_relay.standalone)

Then talk to it with:
    voice-relay-client --url ws://localhost:8080/ws
"""

import argparse
import asyncio
import logging
from dataclasses import replace
from typing import Optional

import uvicorn
from fastapi import FastAPI

from .client import VoiceClient
from .config import ClientConfig, RelayConfig
from .llm_client import LLMClient
from .pipeline import TurnPipeline
from .server import create_app
from .stt import WhisperAPITranscriber
from .tts import SpeechAPISynthesizer

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def build_pipeline(config: RelayConfig) -> TurnPipeline:
    """Wire the provider clients into a turn pipeline."""
    providers = config.providers
    return TurnPipeline(
        transcriber=WhisperAPITranscriber(providers),
        generator=LLMClient(providers),
        synthesizer=SpeechAPISynthesizer(providers),
        config=config,
    )


def build_app(config: Optional[RelayConfig] = None) -> FastAPI:
    config = config or RelayConfig.from_env()
    if not config.providers.api_key:
        logger.warning("OPENAI_API_KEY is not set; provider requests will be unauthenticated")
    return create_app(build_pipeline(config), config)


def main(argv=None):
    """Run the relay server."""
    defaults = RelayConfig.from_env()
    parser = argparse.ArgumentParser(description="Turn-based voice conversation relay server")
    parser.add_argument("--host", default=defaults.host, help=f"Bind address (default: {defaults.host})")
    parser.add_argument("--port", type=int, default=defaults.port, help=f"Port (default: {defaults.port})")
    parser.add_argument("--keep-audio", metavar="DIR", default=defaults.keep_audio_dir,
                        help="Save each finalized utterance as a WAV file in DIR")
    args = parser.parse_args(argv)

    config = replace(defaults, host=args.host, port=args.port, keep_audio_dir=args.keep_audio)
    app = build_app(config)

    print("\n" + "="*60)
    print("🎤 Voice Relay Server")
    print("="*60)
    print(f"\nWebsocket endpoint: ws://{config.host}:{config.port}/ws")
    print(f"LLM: {config.providers.llm_provider} / {config.providers.llm_model}")
    print("\nPress Ctrl+C to stop\n")

    uvicorn.run(
        app,
        host=config.host,
        port=config.port,
        log_level="info",
    )


def client_main(argv=None):
    """Run the console voice client."""
    defaults = ClientConfig.from_env()
    parser = argparse.ArgumentParser(description="Console client for the voice relay")
    parser.add_argument("--url", default=defaults.url, help=f"Relay websocket URL (default: {defaults.url})")
    parser.add_argument("--threshold", type=float, default=defaults.volume_threshold,
                        help="Volume (0-1) below which input counts as silence")
    parser.add_argument("--silence", type=float, default=defaults.silence_window,
                        help="Seconds of silence that end an utterance")
    args = parser.parse_args(argv)

    config = replace(defaults, url=args.url, volume_threshold=args.threshold, silence_window=args.silence)
    client = VoiceClient(config, on_status=lambda message: print(f"  {message}"))
    try:
        asyncio.run(client.run_conversation())
    except KeyboardInterrupt:
        print("\nBye")


if __name__ == "__main__":
    main()
