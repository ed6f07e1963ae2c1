# coding=utf-8
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List


_WORDISH = re.compile(r"[A-Za-z0-9À-ÿ]")


def join_segments(segments: List[str]) -> str:
    out = ""
    for seg in segments:
        cur = str(seg or "").strip()
        if not cur:
            continue
        if not out:
            out = cur
            continue
        # CJK text is joined without a separator.
        need_space = bool(_WORDISH.match(out[-1]) or out[-1] in ".,!?;:") and bool(_WORDISH.match(cur[:1]))
        out = f"{out} {cur}" if need_space else f"{out}{cur}"
    return out


@dataclass(frozen=True)
class Segment:
    seq: int
    text: str
    speaker: int
    speaker_change: bool
    source_language: str
    target_language: str
    generation: int = 0

    @property
    def same_language(self) -> bool:
        return self.source_language == self.target_language


class TurnTranscript:
    """
    Running transcript of the current speaker turn.

    Segments are only appended within a turn; a speaker change (or stop)
    starts a new, empty turn.
    """

    def __init__(self) -> None:
        self.speaker = 1
        self.segments: List[str] = []

    @property
    def text(self) -> str:
        return join_segments(self.segments)

    def is_empty(self) -> bool:
        return not self.segments

    def append(self, text: str) -> str:
        cur = str(text or "").strip()
        if cur:
            self.segments.append(cur)
        return self.text

    def next_turn(self) -> int:
        self.segments = []
        self.speaker += 1
        return self.speaker

    def reset(self) -> None:
        self.segments = []

    def snapshot(self) -> Dict[str, object]:
        return {
            "speaker": self.speaker,
            "segment_count": len(self.segments),
            "text_chars": len(self.text),
        }
