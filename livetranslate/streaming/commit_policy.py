# coding=utf-8
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class CommitDecision:
    should_commit: bool
    frames_since_commit: int
    buffered_sec: float
    reason: str


class FrameCommitPolicy:
    """
    Frame-count based checkpoint policy: force an upstream buffer commit every
    N forwarded frames so continuous speech still produces transcripts.
    """

    def __init__(self, commit_every_frames: int = 100, sample_rate: int = 24000) -> None:
        self.commit_every_frames = max(1, int(commit_every_frames))
        self.sample_rate = max(1, int(sample_rate))

    def samples_to_sec(self, samples: int) -> float:
        return float(max(0, int(samples))) / float(self.sample_rate)

    def evaluate(self, frames_since_commit: int, buffered_samples: int = 0) -> CommitDecision:
        frames = max(0, int(frames_since_commit))
        buffered = self.samples_to_sec(buffered_samples)
        if frames >= self.commit_every_frames:
            return CommitDecision(
                should_commit=True,
                frames_since_commit=frames,
                buffered_sec=buffered,
                reason="frame_limit",
            )
        return CommitDecision(
            should_commit=False,
            frames_since_commit=frames,
            buffered_sec=buffered,
            reason="normal",
        )
