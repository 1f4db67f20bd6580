"""Tests for voxcmd.core.normalizer — cleaning and segmenting raw text."""

from __future__ import annotations

import time

import pytest

from voxcmd.core.normalizer import (
    normalize,
    split_sentences,
    strip_fillers,
    strip_politeness,
)


class TestStripFillers:
    def test_english_fillers_removed(self) -> None:
        assert strip_fillers("um open uh application Mail") == "open application Mail"

    def test_multiword_filler(self) -> None:
        assert strip_fillers("you know, open Safari") == "open Safari"

    def test_filler_inside_word_kept(self) -> None:
        assert strip_fillers("summer umbrella") == "summer umbrella"

    def test_dutch_fillers(self) -> None:
        assert strip_fillers("ehm open Mail", "nl") == "open Mail"

    def test_unknown_locale_falls_back_to_english(self) -> None:
        assert strip_fillers("um open Mail", "xx") == "open Mail"

    def test_regional_locale_uses_base_language(self) -> None:
        assert strip_fillers("ähm öffne Mail", "de-AT") == "öffne Mail"


class TestStripPoliteness:
    def test_trailing_please(self) -> None:
        assert strip_politeness("open Mail please") == "open Mail"

    def test_leading_and_trailing(self) -> None:
        assert strip_politeness("please open Mail, thank you") == "open Mail,"

    def test_middle_untouched(self) -> None:
        text = "remind me to please the client at noon"
        assert strip_politeness(text) == text

    def test_repeated_trailing_words(self) -> None:
        assert strip_politeness("open Mail please, thanks, please!") == "open Mail"

    def test_long_separator_runs_stay_fast(self) -> None:
        raw = "open Mail " + "please , , , , " * 30 + "now"
        started = time.perf_counter()
        [utt] = normalize(raw)
        assert time.perf_counter() - started < 1.0
        assert utt.text.startswith("open Mail please")
        assert utt.text.endswith("now")


class TestSplitSentences:
    def test_strong_boundaries(self) -> None:
        assert split_sentences("open Mail! what time is it? stop; go") == [
            "open Mail!",
            "what time is it?",
            "stop;",
            "go",
        ]

    def test_period_splits(self) -> None:
        assert split_sentences("open Mail. open Safari") == ["open Mail", "open Safari"]

    def test_abbreviation_does_not_split(self) -> None:
        assert split_sentences("remind me at 9 a.m. tomorrow") == [
            "remind me at 9 a.m. tomorrow"
        ]

    def test_single_letter_word_ends_sentence(self) -> None:
        assert split_sentences("open application X. what time is it") == [
            "open application X",
            "what time is it",
        ]

    def test_initials_do_not_split(self) -> None:
        assert split_sentences("play J. R. R. Tolkien. stop") == [
            "play J. R. R. Tolkien",
            "stop",
        ]

    def test_newlines_split(self) -> None:
        assert split_sentences("open Mail\nopen Notes") == ["open Mail", "open Notes"]


class TestNormalize:
    def test_preserves_casing(self) -> None:
        [utt] = normalize("Open application Mail.")
        assert utt.text == "Open application Mail"
        assert utt.normalized == "open application mail"

    def test_normalized_offsets_align(self) -> None:
        [utt] = normalize("Open Visual Studio Code")
        start = utt.normalized.index("visual")
        assert utt.text[start : start + 6] == "Visual"

    def test_multiple_utterances(self) -> None:
        utts = normalize("open Mail. what time is it?", session_id="s1")
        assert [u.text for u in utts] == ["open Mail", "what time is it"]
        assert all(u.session_id == "s1" for u in utts)

    @pytest.mark.parametrize("raw", ["", "   ", "um uh", "...", "?!", "\n\n"])
    def test_silence_and_noise_yield_nothing(self, raw: str) -> None:
        assert normalize(raw) == []

    def test_corrections_applied_first(self) -> None:
        [utt] = normalize("open note pad", corrections={"note pad": "Notepad"})
        assert utt.text == "open Notepad"

    def test_metadata_carried(self) -> None:
        [utt] = normalize(
            "open Mail",
            "nl",
            session_id="kitchen",
            source_confidence=0.8,
            timestamp=42.0,
        )
        assert utt.locale == "nl"
        assert utt.source_confidence == 0.8
        assert utt.timestamp == 42.0

    def test_pure(self) -> None:
        first = normalize("um open Mail please", timestamp=1.0)
        second = normalize("um open Mail please", timestamp=1.0)
        assert first == second
        assert first[0].text == "open Mail"
