from pathlib import Path

import pytest

from voice_relay.config import ClientConfig, ProviderConfig, RelayConfig
from voice_relay.standalone import build_app, build_pipeline


def test_defaults():
    config = RelayConfig()
    assert config.min_utterance_bytes == 1000
    assert config.max_segment_length == 50
    assert config.providers.llm_model == "gpt-3.5-turbo"
    assert config.providers.tts_voice == "nova"

    client = ClientConfig()
    assert client.slice_ms == 100
    assert client.volume_threshold == 0.1
    assert client.silence_window == 1.5


def test_relay_config_from_env(monkeypatch):
    monkeypatch.setenv("RELAY_PORT", "9000")
    monkeypatch.setenv("RELAY_MIN_UTTERANCE_BYTES", "2048")
    monkeypatch.setenv("RELAY_ALLOWED_ORIGINS", "http://a.test, http://b.test")
    monkeypatch.setenv("RELAY_KEEP_AUDIO_DIR", "/tmp/utterances")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")

    config = RelayConfig.from_env()

    assert config.port == 9000
    assert config.min_utterance_bytes == 2048
    assert config.allowed_origins == ["http://a.test", "http://b.test"]
    assert config.keep_audio_dir == "/tmp/utterances"
    assert config.providers.api_key == "sk-env"


def test_ollama_provider_uses_ollama_host(monkeypatch):
    monkeypatch.delenv("LLM_API_URL", raising=False)
    monkeypatch.setenv("LLM_PROVIDER", "Ollama")
    monkeypatch.setenv("OLLAMA_HOST", "http://gpu-box:11434")

    config = ProviderConfig.from_env()

    assert config.llm_provider == "ollama"
    assert config.llm_base_url == "http://gpu-box:11434"


def test_client_config_from_env(monkeypatch):
    monkeypatch.setenv("RELAY_URL", "ws://relay.test/ws")
    monkeypatch.setenv("CLIENT_SILENCE_WINDOW", "2.5")

    config = ClientConfig.from_env()

    assert config.url == "ws://relay.test/ws"
    assert config.silence_window == 2.5


def test_build_app_wires_providers():
    config = RelayConfig(providers=ProviderConfig(api_key="sk-test", llm_model="gpt-4o-mini"))

    pipeline = build_pipeline(config)
    app = build_app(config)

    assert pipeline.generator.model == "gpt-4o-mini"
    assert pipeline.transcriber.model == "whisper-1"
    assert pipeline.synthesizer.voice == "nova"
    paths = {route.path for route in app.routes}
    assert {"/ws", "/health", "/status"} <= paths


def test_packaging_metadata():
    tomllib = pytest.importorskip("tomllib")
    root = Path(__file__).resolve().parents[1]
    project = tomllib.loads((root / "pyproject.toml").read_text())["project"]

    readme = project.get("readme")
    if readme is not None:
        assert readme != "spec.md"
        assert (root / readme).exists()
    assert project["scripts"]["voice-relay-server"] == "voice_relay.standalone:main"
    assert project["scripts"]["voice-relay-client"] == "voice_relay.standalone:client_main"
