from voice_triage.voice.speakable import split_sentences, strip_marker, to_speakable

MARKER = "[TRIAGE_COMPLETE]"


def test_strip_marker_reports_presence():
    assert strip_marker("All set. [TRIAGE_COMPLETE]", MARKER) == ("All set.", True)
    assert strip_marker("  Tell me more.  ", MARKER) == ("Tell me more.", False)
    assert strip_marker("anything", "") == ("anything", False)


def test_to_speakable_strips_completion_marker():
    speak, dbg = to_speakable("All set. [TRIAGE_COMPLETE]", completion_marker=MARKER)
    assert speak == "All set."
    assert dbg["stripped_marker"] is True


def test_marker_only_reply_is_not_spoken():
    speak, dbg = to_speakable("[TRIAGE_COMPLETE]", completion_marker=MARKER)
    assert speak is None
    assert dbg["skip_reason"] == "empty_after_marker"

    speak2, dbg2 = to_speakable("   ")
    assert speak2 is None
    assert dbg2["skip_reason"] == "empty"


def test_to_speakable_drops_code_fences():
    speak, dbg = to_speakable("Here:\n```python\nprint(1)\n```\nDone.")
    assert speak == "Here: Done."
    assert dbg["dropped_code"] is True


def test_to_speakable_flattens_markdown():
    text = "# Advice\n- **Rest** and drink [water](https://example.com).\n- Take `ibuprofen`."
    speak, _ = to_speakable(text)
    assert speak == "Advice Rest and drink water. Take ibuprofen."


def test_underscores_inside_words_are_kept():
    speak, _ = to_speakable("Check the file_name_here value.")
    assert speak == "Check the file_name_here value."


def test_long_text_is_cut_at_sentence_boundary():
    speak, dbg = to_speakable("First sentence. Second sentence here.", max_chars=20)
    assert speak == "First sentence."
    assert dbg["truncated"] is True


def test_split_sentences():
    assert split_sentences("One. Two? Three!") == ["One.", "Two?", "Three!"]
    assert split_sentences("") == []
