# coding=utf-8
from __future__ import annotations

import asyncio
import logging
from collections import Counter
from typing import Any, Awaitable, Callable, Dict, List

logger = logging.getLogger(__name__)

SendJson = Callable[[Dict[str, Any]], Awaitable[None]]


def transcript_event(text: str, is_final: bool) -> Dict[str, Any]:
    return {"type": "transcript", "text": str(text or ""), "isFinal": bool(is_final)}


def translation_event(text: str) -> Dict[str, Any]:
    return {"type": "translation", "text": str(text or "")}


def word_translation_event(words: List[Dict[str, str]]) -> Dict[str, Any]:
    return {
        "type": "word_translation",
        "words": [
            {"original": str(w.get("original", "") or ""), "translated": str(w.get("translated", "") or "")}
            for w in words
        ],
    }


def speaker_change_event() -> Dict[str, Any]:
    return {"type": "speaker_change"}


def error_event(message: str) -> Dict[str, Any]:
    return {"type": "error", "message": str(message or "unknown error")}


class ClientEventEmitter:
    """
    Single ordered writer for one client channel.

    Events reach the wire in the order the coroutines acquire the send lock.
    Once closed, further events are dropped.
    """

    def __init__(
        self,
        send_json: SendJson,
        *,
        peer: str = "unknown",
    ) -> None:
        self._send_json = send_json
        self._send_lock = asyncio.Lock()
        self._closed = False
        self.peer = peer
        self.sent: Counter = Counter()
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    async def emit(self, payload: Dict[str, Any]) -> bool:
        async with self._send_lock:
            if self._closed:
                self.dropped += 1
                return False
            await self._send_json(payload)
            msg_type = str(payload.get("type", "") or "")
            self.sent[msg_type] += 1
            return True

    async def transcript(self, text: str, is_final: bool) -> bool:
        return await self.emit(transcript_event(text, is_final))

    async def translation(self, text: str) -> bool:
        return await self.emit(translation_event(text))

    async def word_translation(self, words: List[Dict[str, str]]) -> bool:
        return await self.emit(word_translation_event(words))

    async def speaker_change(self) -> bool:
        return await self.emit(speaker_change_event())

    async def error(self, message: str) -> bool:
        logger.info("client error peer=%s message=%s", self.peer, message)
        return await self.emit(error_event(message))
