# coding=utf-8
"""
Session-scoped error taxonomy.

Every error carries a stable ``code`` and a client-safe ``message``. None of
them is allowed to escape a session: the relay turns them into one ``error``
event on the client channel.
"""
from __future__ import annotations

from dataclasses import dataclass


class ErrCode:
    CONFIGURATION = "configuration"
    UPSTREAM_LINK = "upstream_link"
    TRANSCRIPTION = "transcription"
    TRANSLATION = "translation"
    PROTOCOL = "protocol"


@dataclass(eq=False)
class RelayError(Exception):
    code: str
    message: str

    def __str__(self) -> str:
        return self.message


class ConfigurationError(RelayError):
    def __init__(self, message: str = "service credentials are not configured") -> None:
        super().__init__(ErrCode.CONFIGURATION, message)


class UpstreamLinkError(RelayError):
    def __init__(self, message: str = "upstream connection failed") -> None:
        super().__init__(ErrCode.UPSTREAM_LINK, message)


class TranscriptionFailure(RelayError):
    def __init__(self, message: str = "transcription failed") -> None:
        super().__init__(ErrCode.TRANSCRIPTION, message)


class TranslationFailure(RelayError):
    def __init__(self, message: str = "translation failed") -> None:
        super().__init__(ErrCode.TRANSLATION, message)


class ProtocolError(RelayError):
    def __init__(self, message: str = "malformed message") -> None:
        super().__init__(ErrCode.PROTOCOL, message)
