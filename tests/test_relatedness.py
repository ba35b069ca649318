"""
Tests for the lexical relatedness scorer.
"""
from __future__ import annotations

import pytest

from silo_linker.models import Node
from silo_linker.relatedness import HUB_BONUS, RelatednessScorer


@pytest.fixture
def moon():
    return Node(1, "Moon Water Ritual", "<p>Charge moon water under the full moon.</p>", categories=["Moon"])


@pytest.fixture
def full_moon():
    return Node(2, "Full Moon Ritual", "<p>The full moon ritual uses charged water.</p>", categories=["moon"])


@pytest.fixture
def bread():
    return Node(3, "Sourdough Bread", "<p>Flour, salt and patience.</p>", categories=["Baking"])


class TestRelatednessScorer:

    @pytest.mark.unit
    def test_score_bounds_and_symmetry(self, moon, full_moon, bread):
        scorer = RelatednessScorer()
        close = scorer.score(moon, full_moon)
        assert 0.0 < close <= 1.0
        assert scorer.score(full_moon, moon) == pytest.approx(close)
        assert scorer.score(moon, bread) == 0.0

    @pytest.mark.unit
    def test_hub_bonus(self, moon, bread):
        assert RelatednessScorer(hub_id=1).score(moon, bread) == pytest.approx(HUB_BONUS)

    @pytest.mark.unit
    def test_top_related_threshold_and_order(self, moon, full_moon, bread):
        scorer = RelatednessScorer()
        related = scorer.top_related(moon, [bread, moon, full_moon], limit=3)
        assert [node.node_id for node, _ in related] == [2]

    @pytest.mark.unit
    def test_top_related_limit(self, moon, full_moon, bread):
        scorer = RelatednessScorer(hub_id=1)
        assert scorer.top_related(full_moon, [moon, bread], limit=0) == []
        related = scorer.top_related(bread, [moon, full_moon], limit=1)
        assert [node.node_id for node, _ in related] == []

    @pytest.mark.unit
    def test_keyword_cache_invalidated_on_body_change(self, moon, full_moon):
        scorer = RelatednessScorer()
        before = scorer.score(moon, full_moon)
        moon.body = "<p>Nothing in common whatsoever.</p>"
        assert scorer.score(moon, full_moon) < before
