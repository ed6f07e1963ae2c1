import base64

import pytest

from livetranslate.streaming.errors import ErrCode, ProtocolError
from livetranslate.streaming.protocol import (
    SessionConfig,
    encode_pcm16le,
    language_name,
    parse_client_message,
    pcm_to_base64,
    resolve_session_config,
)


def test_parse_client_message_reads_type_and_payload():
    msg = parse_client_message('{"type": "START", "inputLanguage": "sv", "outputLanguage": "en"}')
    assert msg.type == "start"
    assert msg.payload["inputLanguage"] == "sv"


def test_parse_client_message_rejects_invalid_json():
    with pytest.raises(ProtocolError) as exc:
        parse_client_message("{not json")
    assert exc.value.code == ErrCode.PROTOCOL
    assert str(exc.value).startswith("invalid json")


def test_parse_client_message_rejects_non_object():
    with pytest.raises(ProtocolError, match="must be an object"):
        parse_client_message("[1, 2, 3]")


def test_parse_client_message_rejects_unknown_type():
    with pytest.raises(ProtocolError, match="unknown message type: subscribe"):
        parse_client_message('{"type": "subscribe"}')
    with pytest.raises(ProtocolError, match="<missing>"):
        parse_client_message("{}")


def test_resolve_session_config_falls_back_to_base():
    base = SessionConfig(input_language="sv", output_language="en")
    cfg = resolve_session_config({"outputLanguage": "ZH"}, base)
    assert cfg == SessionConfig(input_language="sv", output_language="zh")
    assert resolve_session_config({"inputLanguage": ""}, base) == base


def test_resolve_session_config_rejects_unsupported_language():
    with pytest.raises(ProtocolError, match="unsupported language: fr"):
        resolve_session_config({"inputLanguage": "fr"}, SessionConfig())


def test_language_name_known_and_unknown():
    assert language_name("sv") == "Swedish"
    assert language_name("zh") == "Chinese"
    assert language_name("xx") == "xx"


def test_encode_pcm16le_little_endian():
    raw = encode_pcm16le([0, 1, -1, 32767, -32768])
    assert raw == b"\x00\x00\x01\x00\xff\xff\xff\x7f\x00\x80"
    assert pcm_to_base64(raw) == base64.b64encode(raw).decode("ascii")


def test_encode_pcm16le_empty_frame():
    assert encode_pcm16le([]) == b""


def test_encode_pcm16le_rejects_bad_frames():
    with pytest.raises(ProtocolError, match="array of int16"):
        encode_pcm16le("abc")
    with pytest.raises(ProtocolError, match="out of int16 range"):
        encode_pcm16le([0, 40000])
    with pytest.raises(ProtocolError, match="too large"):
        encode_pcm16le([0] * 11, max_samples=10)
    with pytest.raises(ProtocolError, match="must be integers"):
        encode_pcm16le(["a", "b"])
    with pytest.raises(ProtocolError, match="must be integers"):
        encode_pcm16le([1.7, 3])
    with pytest.raises(ProtocolError, match="must be integers"):
        encode_pcm16le([1.7, "3"])
    with pytest.raises(ProtocolError, match="must be integers"):
        encode_pcm16le([True, False])
    with pytest.raises(ProtocolError, match="flat array"):
        encode_pcm16le([[1, 2], [3, 4]])
