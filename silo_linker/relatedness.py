"""
Lexical relatedness between two nodes.

Weighted sum of title word overlap, body keyword overlap and shared category
overlap, plus a flat bonus when either node is the silo hub. Used by the
``ai_contextual`` linking mode to pick each node's nearest neighbours.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Set, Tuple

from silo_linker.models import Node
from silo_linker.text_utils import (
    content_hash,
    jaccard,
    meaningful_words,
    strip_tags,
    tokenize,
)

logger = logging.getLogger("relatedness")

WEIGHT_TITLE = 0.3
WEIGHT_CONTENT = 0.4
WEIGHT_CATEGORY = 0.2
HUB_BONUS = 0.1
MIN_RELATED_SCORE = 0.1


class RelatednessScorer:
    """Scores node pairs in [0, 1].

    Keyword sets are cached per node and invalidated when the body changes,
    since a single ``ai_contextual`` run scores every ordered pair.
    """

    def __init__(self, hub_id: Optional[int] = None):
        self.hub_id = hub_id
        self._keyword_cache: Dict[int, Tuple[str, Set[str]]] = {}

    def _content_keywords(self, node: Node) -> Set[str]:
        digest = content_hash(node.body or "")
        cached = self._keyword_cache.get(node.node_id)
        if cached and cached[0] == digest:
            return cached[1]
        keywords = set(meaningful_words(strip_tags(node.body or "")))
        self._keyword_cache[node.node_id] = (digest, keywords)
        return keywords

    @staticmethod
    def _title_words(node: Node) -> Set[str]:
        return set(tokenize(node.title))

    @staticmethod
    def _categories(node: Node) -> Set[str]:
        return {c.strip().lower() for c in node.categories if c and c.strip()}

    def score(self, node_a: Node, node_b: Node, hub_id: Optional[int] = None) -> float:
        hub = self.hub_id if hub_id is None else hub_id
        total = (
            WEIGHT_TITLE * jaccard(self._title_words(node_a), self._title_words(node_b))
            + WEIGHT_CONTENT * jaccard(self._content_keywords(node_a), self._content_keywords(node_b))
            + WEIGHT_CATEGORY * jaccard(self._categories(node_a), self._categories(node_b))
        )
        if hub is not None and hub in (node_a.node_id, node_b.node_id):
            total += HUB_BONUS
        return min(total, 1.0)

    def top_related(
        self,
        source: Node,
        candidates: Sequence[Node],
        limit: int,
        threshold: float = MIN_RELATED_SCORE,
    ) -> List[Tuple[Node, float]]:
        """Return up to ``limit`` candidates scoring above ``threshold``, best first.

        Ties keep candidate order, so earlier members win.
        """
        if limit <= 0:
            return []
        scored = [
            (candidate, self.score(source, candidate))
            for candidate in candidates
            if candidate.node_id != source.node_id
        ]
        scored.sort(key=lambda pair: pair[1], reverse=True)
        selected = [(node, s) for node, s in scored[:limit] if s > threshold]
        logger.debug(
            "Node %d: %d related of %d candidates (limit %d)",
            source.node_id, len(selected), len(scored), limit,
        )
        return selected
