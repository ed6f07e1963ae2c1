# coding=utf-8
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

SPEECH_STARTED = "speech_started"
SPEECH_STOPPED = "speech_stopped"
TRANSCRIPTION_DELTA = "transcription.delta"
TRANSCRIPTION_COMPLETED = "transcription.completed"
TRANSCRIPTION_FAILED = "transcription.failed"
ERROR = "error"

_WIRE_KINDS: Dict[str, str] = {
    "input_audio_buffer.speech_started": SPEECH_STARTED,
    "input_audio_buffer.speech_stopped": SPEECH_STOPPED,
    "conversation.item.input_audio_transcription.delta": TRANSCRIPTION_DELTA,
    "conversation.item.input_audio_transcription.completed": TRANSCRIPTION_COMPLETED,
    "conversation.item.input_audio_transcription.failed": TRANSCRIPTION_FAILED,
    "error": ERROR,
}


@dataclass(frozen=True)
class UpstreamEvent:
    kind: str
    text: str = ""
    message: str = ""
    item_id: str = ""


def _error_message(payload: Dict[str, Any], default: str) -> str:
    err = payload.get("error")
    if isinstance(err, dict):
        msg = err.get("message")
        if isinstance(msg, str) and msg.strip():
            return msg.strip()
    return default


def parse_upstream_event(payload: Dict[str, Any]) -> Optional[UpstreamEvent]:
    """Map one upstream wire message to an event, or None for kinds the relay ignores."""
    kind = _WIRE_KINDS.get(str(payload.get("type", "") or ""))
    if kind is None:
        return None
    item_id = str(payload.get("item_id", "") or "")
    if kind == TRANSCRIPTION_DELTA:
        return UpstreamEvent(kind=kind, text=str(payload.get("delta", "") or ""), item_id=item_id)
    if kind == TRANSCRIPTION_COMPLETED:
        return UpstreamEvent(kind=kind, text=str(payload.get("transcript", "") or ""), item_id=item_id)
    if kind == TRANSCRIPTION_FAILED:
        return UpstreamEvent(kind=kind, message=_error_message(payload, "transcription failed"), item_id=item_id)
    if kind == ERROR:
        return UpstreamEvent(kind=kind, message=_error_message(payload, "Unknown error"))
    return UpstreamEvent(kind=kind, item_id=item_id)
