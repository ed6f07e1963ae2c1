# coding=utf-8
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class SpeakerChangeDecision:
    speaker_change: bool
    reason: str
    silence_ms: float


class SpeakerChangePolicy:
    """
    Decide whether a finalized transcript starts a new speaker turn.

    Evaluated once per finalized segment, before its text is appended to the
    running transcript.
    """

    def __init__(self, silence_threshold_ms: float = 2000.0) -> None:
        self.silence_threshold_ms = max(0.0, float(silence_threshold_ms))

    def evaluate(self, *, silence_ms: float, has_running_text: bool) -> SpeakerChangeDecision:
        silence = max(0.0, float(silence_ms))
        if not has_running_text:
            return SpeakerChangeDecision(
                speaker_change=False,
                reason="empty_turn",
                silence_ms=silence,
            )
        if silence > self.silence_threshold_ms:
            return SpeakerChangeDecision(
                speaker_change=True,
                reason="silence",
                silence_ms=silence,
            )
        return SpeakerChangeDecision(
            speaker_change=False,
            reason="none",
            silence_ms=silence,
        )
