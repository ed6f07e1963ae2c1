# coding=utf-8
"""
Inbound client protocol: one JSON object per WebSocket text message.

    {"type": "start", "inputLanguage": "sv", "outputLanguage": "en"}
    {"type": "audio", "data": [int16, ...], "inputLanguage": ..., "outputLanguage": ...}
    {"type": "configure", "inputLanguage": ..., "outputLanguage": ...}
    {"type": "stop"}
"""
from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

import numpy as np

from livetranslate.streaming.errors import ProtocolError

SAMPLE_RATE = 24000
NUM_CHANNELS = 1
DEFAULT_MAX_FRAME_SAMPLES = SAMPLE_RATE * 2

LANGUAGE_NAMES: Dict[str, str] = {
    "sv": "Swedish",
    "en": "English",
    "zh": "Chinese",
}

MESSAGE_TYPES = frozenset({"start", "audio", "stop", "configure"})


@dataclass(frozen=True)
class SessionConfig:
    input_language: str = "sv"
    output_language: str = "en"


@dataclass(frozen=True)
class ClientMessage:
    type: str
    payload: Dict[str, Any]


def language_name(code: str) -> str:
    return LANGUAGE_NAMES.get(str(code or "").strip().lower(), str(code or ""))


def normalize_language(raw: Any, default: str) -> str:
    if raw is None:
        return default
    code = str(raw).strip().lower()
    if not code:
        return default
    if code not in LANGUAGE_NAMES:
        raise ProtocolError(f"unsupported language: {code}")
    return code


def resolve_session_config(payload: Dict[str, Any], base: SessionConfig) -> SessionConfig:
    return SessionConfig(
        input_language=normalize_language(payload.get("inputLanguage"), base.input_language),
        output_language=normalize_language(payload.get("outputLanguage"), base.output_language),
    )


def parse_json_message(text: str) -> Dict[str, Any]:
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"invalid json: {e}") from e
    if not isinstance(payload, dict):
        raise ProtocolError("json message must be an object")
    return payload


def parse_client_message(text: str) -> ClientMessage:
    payload = parse_json_message(text)
    msg_type = str(payload.get("type", "") or "").strip().lower()
    if msg_type not in MESSAGE_TYPES:
        raise ProtocolError(f"unknown message type: {msg_type or '<missing>'}")
    return ClientMessage(type=msg_type, payload=payload)


def encode_pcm16le(samples: Any, max_samples: Optional[int] = DEFAULT_MAX_FRAME_SAMPLES) -> bytes:
    """Pack a list of int16 samples as raw little-endian PCM bytes."""
    if not isinstance(samples, (list, tuple)):
        raise ProtocolError("audio data must be an array of int16 samples")
    if not samples:
        return b""
    if max_samples is not None and len(samples) > int(max_samples):
        raise ProtocolError("audio frame too large")
    try:
        arr = np.asarray(samples)
    except (TypeError, ValueError, OverflowError) as e:
        raise ProtocolError(f"audio data must be integers: {e}") from e
    if arr.ndim != 1:
        raise ProtocolError("audio data must be a flat array")
    # floats, strings and bools are rejected, not truncated
    if arr.dtype.kind not in "iu":
        raise ProtocolError(f"audio data must be integers, got {arr.dtype}")
    if arr.min() < -32768 or arr.max() > 32767:
        raise ProtocolError("audio sample out of int16 range")
    return arr.astype("<i2").tobytes()


def pcm_to_base64(raw: bytes) -> str:
    return base64.b64encode(bytes(raw)).decode("ascii")
