from livetranslate.debug.event_selfcheck import analyze_client_events, summarize_result


def _segment_events(text, translated, words=True, change=False):
    out = []
    if change:
        out.append({"type": "speaker_change"})
    out.append({"type": "transcript", "text": text, "isFinal": True})
    out.append({"type": "translation", "text": translated})
    if words:
        out.append({"type": "word_translation", "words": []})
    return out


def test_selfcheck_clean_stream():
    events = (
        [{"type": "transcript", "text": "hund", "isFinal": False}]
        + _segment_events("hund springer", "dog runs")
        + _segment_events("katten sover", "the cat sleeps", words=False, change=True)
        + [{"type": "error", "message": "Translation failed"}]
    )
    result = analyze_client_events(events)
    assert result.clean is True
    assert result.partial_count == 1
    assert result.final_count == 2
    assert result.translation_count == 2
    assert result.word_translation_count == 1
    assert result.speaker_changes == 1
    assert result.errors == 1


def test_selfcheck_flags_gloss_before_translation():
    events = [
        {"type": "transcript", "text": "hund", "isFinal": True},
        {"type": "word_translation", "words": []},
        {"type": "translation", "text": "dog"},
    ]
    result = analyze_client_events(events)
    assert result.clean is False
    assert result.gloss_before_translation == 1
    assert result.examples[0]["kind"] == "gloss_before_translation"


def test_selfcheck_flags_orphan_speaker_change():
    events = _segment_events("ett", "one") + [
        {"type": "speaker_change"},
        {"type": "translation", "text": "two"},
        {"type": "speaker_change"},
    ]
    result = analyze_client_events(events)
    assert result.orphan_speaker_changes == 2
    assert result.clean is False


def test_selfcheck_flags_translation_without_transcript():
    result = analyze_client_events([{"type": "translation", "text": "dog"}])
    assert result.translations_without_transcript == 1
    text = summarize_result(result)
    assert "translations_without_transcript=1" in text
    assert "examples:" in text
