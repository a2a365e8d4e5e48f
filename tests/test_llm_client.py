import asyncio
import json

import httpx
import pytest

from voice_relay.config import ProviderConfig
from voice_relay.llm_client import LLMClient
from voice_relay.stt import WhisperAPITranscriber
from voice_relay.tts import SpeechAPISynthesizer


def collect(stream):
    async def run():
        return [delta async for delta in stream]
    return asyncio.run(run())


def sse(*events):
    lines = [f"data: {json.dumps(e)}" for e in events] + ["data: [DONE]"]
    return ("\n\n".join(lines) + "\n\n").encode()


def delta(text):
    return {"choices": [{"delta": {"content": text}}]}


def test_openai_stream_yields_deltas():
    requests = []

    def handler(request: httpx.Request):
        requests.append(request)
        body = sse({"choices": [{"delta": {"role": "assistant"}}]}, delta("Hello"), delta(" there!"))
        return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

    config = ProviderConfig(api_key="sk-test", base_url="https://api.example.com")
    client = LLMClient(config, transport=httpx.MockTransport(handler))

    parts = collect(client.stream_reply("Be brief.", "Hi"))

    assert parts == ["Hello", " there!"]
    request = requests[0]
    assert request.url == "https://api.example.com/v1/chat/completions"
    assert request.headers["authorization"] == "Bearer sk-test"
    payload = json.loads(request.content)
    assert payload["model"] == "gpt-3.5-turbo"
    assert payload["stream"] is True
    assert payload["messages"] == [
        {"role": "system", "content": "Be brief."},
        {"role": "user", "content": "Hi"},
    ]


def test_ollama_stream_reads_ndjson():
    def handler(request: httpx.Request):
        assert request.url.path == "/api/chat"
        lines = [
            {"message": {"content": "Hi"}, "done": False},
            {"message": {"content": " you"}, "done": False},
            {"message": {"content": ""}, "done": True},
        ]
        return httpx.Response(200, content="\n".join(json.dumps(l) for l in lines).encode())

    config = ProviderConfig(llm_provider="ollama", llm_model="llama3")
    client = LLMClient(config, transport=httpx.MockTransport(handler))

    assert client.base_url == "http://localhost:11434"
    assert collect(client.stream_reply("sys", "hello")) == ["Hi", " you"]


def test_ollama_error_line_raises():
    def handler(request: httpx.Request):
        return httpx.Response(200, content=b'{"error": "model not found"}\n')

    client = LLMClient(ProviderConfig(llm_provider="ollama"), transport=httpx.MockTransport(handler))

    with pytest.raises(RuntimeError, match="model not found"):
        collect(client.stream_reply("sys", "hello"))


def test_http_error_propagates():
    def handler(request: httpx.Request):
        return httpx.Response(500, content=b"boom")

    client = LLMClient(ProviderConfig(), transport=httpx.MockTransport(handler))

    with pytest.raises(httpx.HTTPStatusError):
        collect(client.stream_reply("sys", "hello"))


def test_transcriber_uploads_wav():
    requests = []

    def handler(request: httpx.Request):
        requests.append(request)
        return httpx.Response(200, json={"text": "  what time is it  "})

    transcriber = WhisperAPITranscriber(ProviderConfig(api_key="k"), transport=httpx.MockTransport(handler))

    text = asyncio.run(transcriber.transcribe(b"RIFFdata", filename="abc.wav"))

    assert text == "what time is it"
    request = requests[0]
    assert request.url.path == "/v1/audio/transcriptions"
    assert b'name="model"' in request.content
    assert b"whisper-1" in request.content
    assert b'filename="abc.wav"' in request.content
    assert b"RIFFdata" in request.content


def test_transcriber_skips_empty_audio():
    def handler(request: httpx.Request):
        raise AssertionError("no request expected")

    transcriber = WhisperAPITranscriber(transport=httpx.MockTransport(handler))
    assert asyncio.run(transcriber.transcribe(b"")) == ""


def test_synthesizer_requests_speech():
    requests = []

    def handler(request: httpx.Request):
        requests.append(request)
        return httpx.Response(200, content=b"RIFF-audio")

    synthesizer = SpeechAPISynthesizer(ProviderConfig(), transport=httpx.MockTransport(handler))

    audio = asyncio.run(synthesizer.synthesize("Hello there."))

    assert audio == b"RIFF-audio"
    assert requests[0].url.path == "/v1/audio/speech"
    assert json.loads(requests[0].content) == {
        "model": "tts-1",
        "voice": "nova",
        "input": "Hello there.",
        "response_format": "wav",
    }


def test_synthesizer_error_propagates():
    def handler(request: httpx.Request):
        return httpx.Response(429, json={"error": "rate limited"})

    synthesizer = SpeechAPISynthesizer(ProviderConfig(), transport=httpx.MockTransport(handler))

    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(synthesizer.synthesize("Hello"))
