from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List


@dataclass
class EventSelfcheckResult:
    partial_count: int
    final_count: int
    translation_count: int
    word_translation_count: int
    speaker_changes: int
    errors: int
    gloss_before_translation: int
    orphan_speaker_changes: int
    translations_without_transcript: int
    examples: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return (
            self.gloss_before_translation == 0
            and self.orphan_speaker_changes == 0
            and self.translations_without_transcript == 0
        )


def analyze_client_events(events: Iterable[Dict[str, Any]]) -> EventSelfcheckResult:
    """
    Check a recorded client event stream for ordering violations.

    Per segment the expected order is: speaker_change (optional), final
    transcript, translation, word_translation (optional).
    """
    counts = {"partial": 0, "final": 0, "translation": 0, "word_translation": 0, "speaker_change": 0, "error": 0}
    gloss_early = 0
    orphan_changes = 0
    untethered = 0
    examples: List[Dict[str, Any]] = []

    # state of the segment currently being emitted
    seen_final = False
    seen_translation = False
    pending_change_at = -1

    def _example(kind: str, idx: int, msg: Dict[str, Any]) -> None:
        if len(examples) < 8:
            examples.append({"kind": kind, "index": idx, "type": msg.get("type"), "text": str(msg.get("text", ""))[:160]})

    for idx, msg in enumerate(events):
        msg_type = str(msg.get("type", "")).lower()

        if pending_change_at >= 0 and not (msg_type == "transcript" and msg.get("isFinal")):
            orphan_changes += 1
            _example("orphan_speaker_change", pending_change_at, msg)
            pending_change_at = -1

        if msg_type == "transcript":
            if msg.get("isFinal"):
                counts["final"] += 1
                seen_final = True
                seen_translation = False
                pending_change_at = -1
            else:
                counts["partial"] += 1
        elif msg_type == "translation":
            counts["translation"] += 1
            if not seen_final:
                untethered += 1
                _example("translation_without_transcript", idx, msg)
            seen_translation = True
        elif msg_type == "word_translation":
            counts["word_translation"] += 1
            if not seen_translation:
                gloss_early += 1
                _example("gloss_before_translation", idx, msg)
            seen_translation = False
            seen_final = False
        elif msg_type == "speaker_change":
            counts["speaker_change"] += 1
            pending_change_at = idx
        elif msg_type == "error":
            counts["error"] += 1

    if pending_change_at >= 0:
        orphan_changes += 1

    return EventSelfcheckResult(
        partial_count=counts["partial"],
        final_count=counts["final"],
        translation_count=counts["translation"],
        word_translation_count=counts["word_translation"],
        speaker_changes=counts["speaker_change"],
        errors=counts["error"],
        gloss_before_translation=gloss_early,
        orphan_speaker_changes=orphan_changes,
        translations_without_transcript=untethered,
        examples=examples,
    )


def summarize_result(result: EventSelfcheckResult) -> str:
    lines = [
        f"partials={result.partial_count}",
        f"finals={result.final_count}",
        f"translations={result.translation_count}",
        f"word_translations={result.word_translation_count}",
        f"speaker_changes={result.speaker_changes}",
        f"errors={result.errors}",
        f"gloss_before_translation={result.gloss_before_translation}",
        f"orphan_speaker_changes={result.orphan_speaker_changes}",
        f"translations_without_transcript={result.translations_without_transcript}",
    ]
    if result.examples:
        lines.append("examples:")
        for ex in result.examples:
            kind = ex.get("kind", "event")
            lines.append(f"  - {kind}: {ex}")
    return "\n".join(lines)
