"""
Anchor text selection for a single edge.

Candidates come from the suggester first (when configured and within its
hourly budget), then from a chain of lexical heuristics. Every candidate is
canonicalized by ``text_utils.clean_anchor`` and checked against the run's
used-anchor set; collisions pull further candidates from the same stream,
then fall back to a numeric suffix.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, List, Optional, Set

from silo_linker.errors import NoAnchorError, SuggesterError
from silo_linker.models import Node, RunContext
from silo_linker.text_utils import (
    MAX_ANCHOR_CHARS,
    MAX_ANCHOR_WORDS,
    SEMANTIC_CLUSTERS,
    STOPWORDS,
    cased_words,
    clean_anchor,
    find_in_text,
    matching_clusters,
    meaningful_words,
    normalize_whitespace,
    significant_title_words,
    strip_tags,
    tokenize,
    word_windows,
)

logger = logging.getLogger("anchor_selector")

MAX_ALTERNATIVES = 10
MAX_SUFFIX_ATTEMPTS = 5
SINGLE_WORD_PREFIXES = ("best", "guide to", "learn about", "about")


class AnchorTextSelector:
    """Produces validated, run-unique anchor text for a source/target pair.

    Parameters
    ----------
    suggester : object, optional
        Anything with ``suggest_anchors(source, target, context)`` and
        ``is_available()``, e.g. ``ClaudeSuggester``.
    store : object, optional
        Silo store; when given, anchors already used ``max_anchor_usage``
        times across the site count as collisions.
    """

    def __init__(
        self,
        suggester: Any = None,
        store: Any = None,
        max_alternatives: int = MAX_ALTERNATIVES,
        max_suffix_attempts: int = MAX_SUFFIX_ATTEMPTS,
    ):
        self.suggester = suggester
        self.store = store
        self.max_alternatives = max_alternatives
        self.max_suffix_attempts = max_suffix_attempts
        self.last_suggested = False

    # -- Public API ---------------------------------------------------------

    def select_anchor(self, source: Node, target: Node, ctx: RunContext) -> Optional[str]:
        """Return anchor text for ``source -> target``, or None to skip the edge.

        The chosen text is added to ``ctx.used_anchors``.
        """
        self.last_suggested = False
        first: Optional[str] = None
        rejected = 0

        for candidate, suggested in self._candidate_stream(source, target, ctx):
            if first is None:
                first = candidate
            if not self._is_taken(candidate, ctx):
                ctx.mark_anchor_used(candidate)
                self.last_suggested = suggested
                return candidate
            rejected += 1
            logger.debug(
                "Anchor %r already used in run (%d -> %d)", candidate, source.node_id, target.node_id
            )
            if rejected > self.max_alternatives:
                break

        if first is None:
            logger.info("No usable anchor for %d -> %d", source.node_id, target.node_id)
            return None
        return self._with_suffix(first, ctx)

    def require_anchor(self, source: Node, target: Node, ctx: RunContext) -> str:
        """``select_anchor`` that raises ``NoAnchorError`` instead of returning None."""
        anchor = self.select_anchor(source, target, ctx)
        if anchor is None:
            raise NoAnchorError(
                f"No usable anchor for {source.node_id} -> {target.node_id}",
                source_id=source.node_id,
                target_id=target.node_id,
            )
        return anchor

    def variations(self, source: Node, target: Node, ctx: RunContext, limit: int = 5) -> List[str]:
        """Distinct cleaned candidates in preference order, without reserving any."""
        result: List[str] = []
        for candidate, _ in self._candidate_stream(source, target, ctx):
            result.append(candidate)
            if len(result) >= limit:
                break
        return result

    # -- Candidate stream ---------------------------------------------------

    def _candidate_stream(self, source: Node, target: Node, ctx: RunContext) -> Iterator[tuple]:
        """Yield ``(cleaned_text, from_suggester)`` once per distinct candidate."""
        seen: Set[str] = set()
        for raw in self.suggested_candidates(source, target, ctx):
            cleaned = clean_anchor(raw)
            if cleaned and cleaned.lower() not in seen:
                seen.add(cleaned.lower())
                yield cleaned, True
        for raw in self.heuristic_candidates(source, target):
            cleaned = clean_anchor(raw)
            if cleaned and cleaned.lower() not in seen:
                seen.add(cleaned.lower())
                yield cleaned, False

    def suggested_candidates(self, source: Node, target: Node, ctx: RunContext) -> List[str]:
        """Suggester phrases, multi-word ones first; empty when unavailable or failing."""
        if self.suggester is None or not ctx.settings.use_suggester:
            return []
        if not self.suggester.is_available():
            return []
        try:
            raw = self.suggester.suggest_anchors(source, target, context=ctx.silo.name)
        except SuggesterError as exc:
            logger.warning(
                "Suggester failed for %d -> %d, using heuristics: %s",
                source.node_id, target.node_id, exc.message,
            )
            return []

        best: List[str] = []
        fallback: List[str] = []
        for text in raw or []:
            text = (text or "").strip()
            if not text or len(text) > MAX_ANCHOR_CHARS:
                continue
            (best if len(text.split()) > 1 else fallback).append(text)
        return best + fallback

    def heuristic_candidates(self, source: Node, target: Node) -> Iterator[str]:
        """Raw heuristic candidates, strongest first."""
        source_text = strip_tags(source.body or "")
        target_text = strip_tags(target.body or "")
        title = normalize_whitespace(strip_tags(target.title or ""))
        title_words = cased_words(title)

        # Whole title present in the source
        if title:
            match = find_in_text(source_text, title)
            if match:
                yield match

        # Three- then two-word title windows present in the source
        for size in (3, 2):
            for window in word_windows(title_words, size):
                if all(w.lower() in STOPWORDS for w in window):
                    continue
                match = find_in_text(source_text, " ".join(window))
                if match:
                    yield match

        yield from self._keyword_phrases(source_text, target_text, title_words)
        yield from self._semantic_phrases(source_text, target_text, title_words)
        yield from self._category_phrases(source, target, title)

        # Contextual phrase built from the title alone
        plain_words = title.split()
        if len(plain_words) > 1:
            yield " ".join(plain_words[:4])
        elif plain_words:
            for prefix in SINGLE_WORD_PREFIXES:
                yield f"{prefix} {plain_words[0]}"

        if title:
            yield title

    # -- Heuristic helpers --------------------------------------------------

    @staticmethod
    def _keyword_phrases(source_text: str, target_text: str, title_words: List[str]) -> Iterator[str]:
        target_keywords = set(meaningful_words(target_text))
        common = [w for w in meaningful_words(source_text) if w in target_keywords]
        if not common:
            return
        title_positions: Dict[str, int] = {}
        display: Dict[str, str] = {}
        for index, word in enumerate(title_words):
            title_positions.setdefault(word.lower(), index)
            display.setdefault(word.lower(), word)

        in_title = [w for w in common if w in title_positions]
        pool = in_title or common
        for word in pool:
            if word not in display:
                display[word] = find_in_text(source_text, word) or word

        ranked = sorted(
            enumerate(pool),
            key=lambda pair: (
                0 if display[pair[1]][:1].isupper() else 1,
                title_positions.get(pair[1], len(title_words)),
                pair[0],
            ),
        )
        words = [display[w] for _, w in ranked[:3]]
        for size in range(len(words), 0, -1):
            yield " ".join(words[:size])

    @staticmethod
    def _semantic_phrases(source_text: str, target_text: str, title_words: List[str]) -> Iterator[str]:
        target_clusters = set(matching_clusters(target_text))
        lowered = [w.lower() for w in title_words]
        for cluster in matching_clusters(source_text):
            if cluster not in target_clusters:
                continue
            for term in SEMANTIC_CLUSTERS[cluster]:
                if term not in lowered:
                    continue
                index = lowered.index(term)
                if index + 1 < len(title_words):
                    yield " ".join(title_words[index:index + 2])
                elif index > 0:
                    yield " ".join(title_words[index - 1:index + 1])
                else:
                    yield title_words[index]
                break
            yield f"{cluster} guide"

    @staticmethod
    def _category_phrases(source: Node, target: Node, title: str) -> Iterator[str]:
        source_categories = {c.strip().lower() for c in source.categories if c and c.strip()}
        for category in target.categories:
            category = (category or "").strip()
            if not category or category.lower() not in source_categories:
                continue
            category_words = set(tokenize(category))
            for word in significant_title_words(title):
                if word.lower() not in category_words:
                    yield f"{category} {word}"
                    break
            yield f"{category} guide"

    # -- Deduplication ------------------------------------------------------

    def _is_taken(self, text: str, ctx: RunContext) -> bool:
        if ctx.is_anchor_used(text):
            return True
        if self.store is not None and ctx.settings.max_anchor_usage > 0:
            if self.store.anchor_usage_count(text) >= ctx.settings.max_anchor_usage:
                logger.debug("Anchor %r reached the usage ceiling", text)
                return True
        return False

    def _with_suffix(self, base: str, ctx: RunContext) -> Optional[str]:
        """Append 2, 3, ... to ``base`` until an unused anchor appears."""
        words = base.split()[: MAX_ANCHOR_WORDS - 1]
        stem = " ".join(words)
        for number in range(2, 2 + self.max_suffix_attempts):
            suffix = f" {number}"
            candidate = stem[: MAX_ANCHOR_CHARS - len(suffix)].rstrip() + suffix
            if not self._is_taken(candidate, ctx):
                ctx.mark_anchor_used(candidate)
                logger.info("Anchor %r collided, using %r", base, candidate)
                return candidate
        logger.warning("Anchor %r still colliding after %d suffixes", base, self.max_suffix_attempts)
        return None
