"""
Tests for the text scanning helpers.
"""
from __future__ import annotations

import pytest

from silo_linker.text_utils import (
    clean_anchor,
    find_in_text,
    find_linkable_span,
    is_valid_anchor,
    matching_clusters,
    meaningful_words,
    paragraph_offsets,
    related_terms,
    split_sentences,
    strip_tags,
    word_windows,
)


class TestStripTags:

    @pytest.mark.unit
    def test_strips_markup_and_scripts(self):
        html = "<p>Moon <b>water</b></p><script>var x = 1;</script>\n\n<p>ritual &amp; rite</p>"
        assert strip_tags(html) == "Moon water ritual & rite"

    @pytest.mark.unit
    def test_plain_text_whitespace(self):
        assert strip_tags("  moon\n\n water  ") == "moon water"
        assert strip_tags("") == ""


class TestCleanAnchor:

    @pytest.mark.unit
    @pytest.mark.parametrize("raw,expected", [
        ("the Moon Water guide.", "Moon Water guide"),
        ('"Full Moon Rituals"', "Full Moon Rituals"),
        ("  crystal   grids  ", "crystal grids"),
        ("one two three four five six seven eight", "one two three four five six"),
        ("to the", None),
        ("", None),
        (None, None),
        ("<b>Tarot</b> spreads", "Tarot spreads"),
    ])
    def test_clean_anchor(self, raw, expected):
        assert clean_anchor(raw) == expected

    @pytest.mark.unit
    def test_length_cap(self):
        cleaned = clean_anchor("supercalifragilistic " * 6)
        assert cleaned is not None
        assert len(cleaned) <= 100

    @pytest.mark.unit
    def test_trailing_stopword_after_truncation(self):
        assert clean_anchor("full moon water rituals for the new moon") == "full moon water rituals"

    @pytest.mark.unit
    def test_validity(self):
        assert is_valid_anchor("moon water")
        assert not is_valid_anchor("it is")
        assert not is_valid_anchor("x" * 101)


class TestPhraseSearch:

    @pytest.mark.unit
    def test_find_in_text_keeps_casing(self):
        assert find_in_text("Read about Moon  Water today", "moon water") == "Moon  Water"
        assert find_in_text("moonwater", "moon") is None

    @pytest.mark.unit
    def test_linkable_span_skips_protected_regions(self):
        html = (
            '<p><a href="/x">moon water</a> and <img alt="moon water"> '
            "<!-- moon water --><code>moon water</code> then moon water.</p>"
        )
        start, end = find_linkable_span(html, "Moon Water")
        assert html[start:end] == "moon water"
        assert html[end:end + 1] == "."

    @pytest.mark.unit
    def test_linkable_span_missing(self):
        assert find_linkable_span("<p>nothing here</p>", "moon water") is None


class TestStructure:

    @pytest.mark.unit
    def test_split_sentences_offsets(self):
        text = "First one. Second one! Third?"
        sentences = split_sentences(text)
        assert [s for _, s in sentences] == ["First one.", "Second one!", "Third?"]
        for offset, sentence in sentences:
            assert text[offset:offset + len(sentence)] == sentence

    @pytest.mark.unit
    def test_paragraph_offsets_tags(self):
        body = "<p>One</p><p>Two</p>"
        assert paragraph_offsets(body) == [3, 13]

    @pytest.mark.unit
    def test_paragraph_offsets_blank_lines(self):
        body = "One\n\nTwo\n\n\nThree"
        offsets = paragraph_offsets(body)
        assert [body[o] for o in offsets] == ["O", "T", "T"]

    @pytest.mark.unit
    def test_meaningful_words(self):
        words = meaningful_words("The moon and the Moon water, with crystals and water.")
        assert words == ["moon", "water", "crystals"]

    @pytest.mark.unit
    def test_word_windows(self):
        assert list(word_windows(["a", "b", "c"], 2)) == [("a", "b"), ("b", "c")]
        assert list(word_windows(["a"], 2)) == []

    @pytest.mark.unit
    def test_term_dictionaries(self):
        assert related_terms("Law") == ["legal", "attorney", "lawyer", "court"]
        assert "law" in related_terms("legal help")
        assert matching_clusters("See a doctor about treatment") == ["health"]
