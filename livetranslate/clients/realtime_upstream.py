# coding=utf-8
"""
Upstream link to a realtime speech-transcription service speaking the
OpenAI Realtime WebSocket protocol.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, Optional

import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, WebSocketException

from livetranslate.streaming.errors import ConfigurationError, UpstreamLinkError
from livetranslate.streaming.protocol import SessionConfig
from livetranslate.streaming.upstream_events import UpstreamEvent, parse_upstream_event

logger = logging.getLogger(__name__)

REALTIME_URL = "wss://api.openai.com/v1/realtime"
REALTIME_MODEL = "gpt-4o-realtime-preview-2024-10-01"
TRANSCRIPTION_MODEL = "whisper-1"


def build_session_update(config: SessionConfig, transcription_model: str = TRANSCRIPTION_MODEL) -> Dict[str, Any]:
    return {
        "type": "session.update",
        "session": {
            "modalities": ["text"],
            "instructions": "Transcribe the user's speech. Do not respond.",
            "input_audio_format": "pcm16",
            "input_audio_transcription": {
                "model": transcription_model,
                "language": config.input_language,
            },
            "turn_detection": {
                "type": "server_vad",
                "create_response": False,
            },
        },
    }


class RealtimeUpstream:
    """One upstream WebSocket link, owned by exactly one session relay."""

    def __init__(
        self,
        api_key: str,
        *,
        url: str = REALTIME_URL,
        model: str = REALTIME_MODEL,
        transcription_model: str = TRANSCRIPTION_MODEL,
        open_timeout_sec: float = 10.0,
    ) -> None:
        self.api_key = str(api_key or "").strip()
        if not self.api_key:
            raise ConfigurationError(
                "OpenAI API key not configured. Please add OPENAI_API_KEY to the environment variables."
            )
        self.url = str(url or REALTIME_URL).rstrip("/")
        self.model = str(model or REALTIME_MODEL)
        self.transcription_model = str(transcription_model or TRANSCRIPTION_MODEL)
        self.open_timeout_sec = max(1.0, float(open_timeout_sec))
        self._ws: Optional[Any] = None
        self._closing = False

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._closing

    async def connect(self, config: SessionConfig) -> None:
        target = f"{self.url}?model={self.model}"
        try:
            self._ws = await websockets.connect(
                target,
                additional_headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "OpenAI-Beta": "realtime=v1",
                },
                open_timeout=self.open_timeout_sec,
                max_size=16 * 1024 * 1024,
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            raise UpstreamLinkError(f"upstream connection failed: {e}") from e
        logger.info("upstream connected url=%s model=%s", self.url, self.model)
        await self._send(build_session_update(config, self.transcription_model))

    async def _send(self, message: Dict[str, Any]) -> None:
        if self._ws is None or self._closing:
            raise UpstreamLinkError("upstream link is not open")
        try:
            await self._ws.send(json.dumps(message))
        except ConnectionClosed as e:
            raise UpstreamLinkError(f"upstream connection dropped: {e}") from e

    async def append_audio(self, audio_b64: str) -> None:
        await self._send({"type": "input_audio_buffer.append", "audio": audio_b64})

    async def commit(self) -> None:
        await self._send({"type": "input_audio_buffer.commit"})

    async def events(self) -> AsyncIterator[UpstreamEvent]:
        ws = self._ws
        if ws is None:
            return
        try:
            async for raw in ws:
                if isinstance(raw, bytes):
                    continue
                try:
                    payload = json.loads(raw)
                except json.JSONDecodeError as e:
                    logger.warning("upstream sent invalid json err=%s", e)
                    continue
                if not isinstance(payload, dict):
                    continue
                evt = parse_upstream_event(payload)
                if evt is not None:
                    yield evt
        except ConnectionClosedOK:
            pass
        except ConnectionClosed as e:
            if not self._closing:
                raise UpstreamLinkError(f"upstream connection dropped: {e}") from e
            return
        if not self._closing:
            raise UpstreamLinkError("upstream connection closed")

    async def close(self) -> None:
        self._closing = True
        ws, self._ws = self._ws, None
        if ws is None:
            return
        try:
            await ws.close()
        except (OSError, WebSocketException) as e:
            logger.debug("upstream close failed err=%s", e)
