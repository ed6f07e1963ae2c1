# coding=utf-8

from .commit_policy import CommitDecision, FrameCommitPolicy
from .events import ClientEventEmitter
from .pipeline import Notice, Partial, TranscriptPipeline
from .relay import SessionRelay
from .segment_policy import SpeakerChangeDecision, SpeakerChangePolicy
from .turn_transcript import Segment, TurnTranscript, join_segments

__all__ = [
    "ClientEventEmitter",
    "CommitDecision",
    "FrameCommitPolicy",
    "Notice",
    "Partial",
    "Segment",
    "SessionRelay",
    "SpeakerChangeDecision",
    "SpeakerChangePolicy",
    "TranscriptPipeline",
    "TurnTranscript",
    "join_segments",
]
