import asyncio
import json
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from livetranslate.cli.serve_ws import _build_translator, _create_app
from livetranslate.streaming.upstream_events import (
    SPEECH_STARTED,
    SPEECH_STOPPED,
    TRANSCRIPTION_COMPLETED,
    TRANSCRIPTION_DELTA,
    UpstreamEvent,
)


class _ScriptedUpstream:
    """Fake realtime link: after ``after_frames`` appended frames it replays a scripted utterance."""

    def __init__(self, script, after_frames=3):
        self.script = list(script)
        self.after_frames = int(after_frames)
        self.frames = 0
        self.config = None
        self._queue = None

    async def connect(self, config):
        self.config = config
        self._queue = asyncio.Queue()

    async def append_audio(self, audio_b64):
        self.frames += 1
        if self.frames == self.after_frames:
            for evt in self.script:
                self._queue.put_nowait(evt)

    async def commit(self):
        return None

    async def events(self):
        while True:
            evt = await self._queue.get()
            if evt is None:
                return
            yield evt

    async def close(self):
        if self._queue is not None:
            self._queue.put_nowait(None)


class _FakeTranslator:
    def __init__(self):
        self.calls = []

    def translate(self, text, source_language=None, target_language=None):
        self.calls.append((text, source_language, target_language))
        return "dog runs" if text == "hund springer" else f"[{source_language}->{target_language}] {text}"

    def gloss(self, text, source_language=None, target_language=None):
        return [{"original": "hund", "translated": "dog"}, {"original": "springer", "translated": "runs"}]


_HUND_SPRINGER = [
    UpstreamEvent(kind=SPEECH_STARTED),
    UpstreamEvent(kind=TRANSCRIPTION_DELTA, text="hund"),
    UpstreamEvent(kind=SPEECH_STOPPED),
    UpstreamEvent(kind=TRANSCRIPTION_COMPLETED, text="hund springer"),
]


def _args(**overrides):
    base = dict(
        openai_api_key="",
        default_input_language="sv",
        default_output_language="en",
        silence_threshold_ms=2000.0,
        commit_every_frames=100,
        translation_timeout_sec=5.0,
        translation_retries=0,
        idle_timeout_sec=30,
        max_connections=4,
        max_frame_samples=48000,
        relay_trace_log=True,
    )
    base.update(overrides)
    return SimpleNamespace(**base)


def _receive_until_type(ws, expected_type: str, max_steps: int = 40):
    seen = []
    for _ in range(max_steps):
        msg = ws.receive_json()
        if msg.get("type") == expected_type:
            return msg
        seen.append(msg.get("type"))
    pytest.fail(f"did not receive {expected_type}, seen={seen}")


def _scripted_factory(upstreams):
    def _factory():
        up = _ScriptedUpstream(_HUND_SPRINGER)
        upstreams.append(up)
        return up

    return _factory


def test_health_endpoint():
    app = _create_app(_args(), translator=_FakeTranslator(), upstream_factory=_scripted_factory([]))
    with TestClient(app) as client:
        resp = client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["active_connections"] == 0
    assert "timestamp" in body


@pytest.mark.parametrize("path", ["/ws", "/"])
def test_ws_relays_transcript_translation_and_gloss(path):
    upstreams = []
    translator = _FakeTranslator()
    app = _create_app(_args(), translator=translator, upstream_factory=_scripted_factory(upstreams))
    client = TestClient(app)

    events = []
    with client.websocket_connect(path) as ws:
        ws.send_text(json.dumps({"type": "start", "inputLanguage": "sv", "outputLanguage": "en"}))
        for _ in range(3):
            ws.send_text(json.dumps({"type": "audio", "data": [0] * 2400}))
        while True:
            msg = ws.receive_json()
            events.append(msg)
            if msg["type"] == "word_translation":
                break
        ws.send_text(json.dumps({"type": "stop"}))

    assert events[0] == {"type": "transcript", "text": "hund", "isFinal": False}
    assert events[1:] == [
        {"type": "transcript", "text": "hund springer", "isFinal": True},
        {"type": "translation", "text": "dog runs"},
        {
            "type": "word_translation",
            "words": [{"original": "hund", "translated": "dog"}, {"original": "springer", "translated": "runs"}],
        },
    ]
    assert upstreams[0].frames == 3
    assert translator.calls == [("hund springer", "sv", "en")]


def test_ws_missing_credentials_reports_one_error():
    app = _create_app(_args(openai_api_key=""), translator=_FakeTranslator())
    client = TestClient(app)

    with client.websocket_connect("/ws") as ws:
        ws.send_text(json.dumps({"type": "start", "inputLanguage": "sv", "outputLanguage": "en"}))
        first = ws.receive_json()
        ws.send_text(json.dumps({"type": "audio", "data": [1, 2, 3]}))
        ws.send_text(json.dumps({"type": "start"}))
        ws.send_text("{")
        second = ws.receive_json()

    assert first["type"] == "error"
    assert "OpenAI API key not configured" in first["message"]
    assert second["type"] == "error"
    assert second["message"].startswith("invalid json")


def test_ws_protocol_errors_keep_connection_open():
    app = _create_app(_args(), translator=_FakeTranslator(), upstream_factory=_scripted_factory([]))
    client = TestClient(app)

    with client.websocket_connect("/ws") as ws:
        ws.send_text(json.dumps({"type": "subscribe"}))
        unknown = _receive_until_type(ws, "error")
        ws.send_bytes(b"\x00\x01")
        binary = _receive_until_type(ws, "error")
        ws.send_text(json.dumps({"type": "start", "inputLanguage": "fr"}))
        language = _receive_until_type(ws, "error")

    assert unknown["message"] == "unknown message type: subscribe"
    assert "binary frames are not supported" in binary["message"]
    assert language["message"] == "unsupported language: fr"


def test_ws_rejects_connections_over_limit():
    app = _create_app(_args(max_connections=1), translator=_FakeTranslator(), upstream_factory=_scripted_factory([]))
    client = TestClient(app)

    with client.websocket_connect("/ws") as first:
        first.send_text("[]")
        assert _receive_until_type(first, "error")["message"] == "json message must be an object"
        with client.websocket_connect("/ws") as second:
            rejected = second.receive_json()
    assert rejected == {"type": "error", "message": "too many active connections"}


def test_ws_idle_timeout_sends_error():
    app = _create_app(_args(idle_timeout_sec=1), translator=_FakeTranslator(), upstream_factory=_scripted_factory([]))
    client = TestClient(app)

    with client.websocket_connect("/ws") as ws:
        msg = ws.receive_json()
    assert msg == {"type": "error", "message": "idle timeout"}


def test_build_translator_needs_a_key_for_the_hosted_api():
    args = SimpleNamespace(
        translation_api_key="",
        openai_api_key="",
        translation_api_base_url="https://api.openai.com",
        translation_api_model="gpt-4o-mini",
        translation_max_tokens=1000,
        translation_timeout_sec=15.0,
    )
    assert _build_translator(args) is None

    args.openai_api_key = "sk-test"
    tr = _build_translator(args)
    assert tr.chat_url == "https://api.openai.com/v1/chat/completions"
    assert tr.api_key == "sk-test"

    local = SimpleNamespace(**{**vars(args), "openai_api_key": "", "translation_api_base_url": "http://127.0.0.1:8000/v1"})
    assert _build_translator(local).chat_url == "http://127.0.0.1:8000/v1/chat/completions"
