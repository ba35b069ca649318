"""
Insertion point location.

Finds a character offset in a source body where a link for a given anchor
belongs. The strategies run in order and the locator always returns an
offset: an empty body yields 0, anything else at worst its midpoint.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from silo_linker.text_utils import (
    paragraph_offsets,
    related_terms,
    split_sentences,
    tokenize,
)

logger = logging.getLogger("insertion")

SENTENCE_SCORE_THRESHOLD = 0.3
MIN_WORD_LENGTH = 4
PREFERRED_PARAGRAPH_INDEX = 2


class LocateStrategy(str, Enum):
    EXACT = "exact"
    ANCHOR_WORD = "anchor_word"
    RELATED_TERM = "related_term"
    SENTENCE = "sentence"
    PARAGRAPH = "paragraph"
    MIDPOINT = "midpoint"


@dataclass
class InsertionPoint:
    offset: int
    strategy: LocateStrategy


class InsertionPointLocator:
    """Finds where in a body a link for ``anchor`` should go."""

    def locate(self, body: str, anchor: str) -> int:
        return self.locate_detailed(body, anchor).offset

    def locate_detailed(self, body: str, anchor: str) -> InsertionPoint:
        body = body or ""
        anchor = (anchor or "").strip()
        lowered = body.lower()

        if anchor:
            index = lowered.find(anchor.lower())
            if index >= 0:
                return InsertionPoint(index, LocateStrategy.EXACT)

            for word in anchor.split():
                if len(word) >= MIN_WORD_LENGTH:
                    index = lowered.find(word.lower())
                    if index >= 0:
                        return InsertionPoint(index, LocateStrategy.ANCHOR_WORD)

            for term in related_terms(anchor):
                index = lowered.find(term)
                if index >= 0:
                    return InsertionPoint(index, LocateStrategy.RELATED_TERM)

            offset = self._best_sentence(body, anchor)
            if offset is not None:
                return InsertionPoint(offset, LocateStrategy.SENTENCE)

        paragraphs = paragraph_offsets(body)
        if len(paragraphs) >= 2:
            index = min(PREFERRED_PARAGRAPH_INDEX, len(paragraphs) - 1)
            return InsertionPoint(paragraphs[index], LocateStrategy.PARAGRAPH)

        return InsertionPoint(len(body) // 2, LocateStrategy.MIDPOINT)

    @staticmethod
    def sentence_score(sentence: str, anchor: str) -> float:
        """Share of anchor words that occur as substrings of the sentence."""
        words = tokenize(anchor)
        if not words:
            return 0.0
        lowered = sentence.lower()
        hits = sum(1 for word in words if word in lowered)
        return hits / len(words)

    def _best_sentence(self, body: str, anchor: str):
        best_offset = None
        best_score = SENTENCE_SCORE_THRESHOLD
        for offset, sentence in split_sentences(body):
            score = self.sentence_score(sentence, anchor)
            if score > best_score:
                best_offset, best_score = offset, score
        return best_offset
