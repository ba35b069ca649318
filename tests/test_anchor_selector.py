"""
Tests for anchor text selection: heuristic order, suggester integration,
run-scoped de-duplication and the usage ceiling.
"""
from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from silo_linker.anchor_selector import AnchorTextSelector
from silo_linker.errors import NoAnchorError, RateLimitExceeded
from silo_linker.models import LinkRecord, Node, RunContext, Silo
from silo_linker.store import SiloStore


def _ctx(**settings):
    silo = Silo(silo_id=1, name="Moon Magic", settings=settings)
    return RunContext(silo=silo, settings=silo.link_settings())


@pytest.fixture
def source():
    return Node(
        1,
        "Lunar Cycles",
        "<p>Every full moon is a chance to make Moon Water for your altar.</p>"
        "<p>Moon water also helps when cleansing crystals.</p>",
        categories=["Moon Magic"],
    )


@pytest.fixture
def target():
    return Node(
        2,
        "Making Moon Water",
        "<p>Moon water is charged under the full moon and used for cleansing.</p>",
        categories=["Moon Magic"],
    )


class TestHeuristics:

    @pytest.mark.unit
    def test_title_window_found_in_source(self, source, target):
        selector = AnchorTextSelector()
        anchor = selector.select_anchor(source, target, _ctx())
        assert anchor == "Moon Water"
        assert selector.last_suggested is False

    @pytest.mark.unit
    def test_candidate_order(self, source, target):
        candidates = list(AnchorTextSelector().heuristic_candidates(source, target))
        assert candidates[0] == "Moon Water"
        assert candidates[-1] == "Making Moon Water"

    @pytest.mark.unit
    def test_category_phrase(self, target):
        source = Node(3, "Altars", "<p>Nothing shared.</p>", categories=["moon magic"])
        phrases = list(AnchorTextSelector().heuristic_candidates(source, target))
        assert "Moon Magic Making" in phrases
        assert "Moon Magic guide" in phrases

    @pytest.mark.unit
    def test_single_word_title(self):
        source = Node(1, "Herbs", "<p>Nothing in common.</p>")
        target = Node(2, "Rosemary", "<p>Rosemary is an herb.</p>")
        candidates = list(AnchorTextSelector().heuristic_candidates(source, target))
        assert "best Rosemary" in candidates
        assert "guide to Rosemary" in candidates
        anchor = AnchorTextSelector().select_anchor(source, target, _ctx())
        assert anchor == "best Rosemary"

    @pytest.mark.unit
    def test_variations_do_not_reserve(self, source, target):
        selector = AnchorTextSelector()
        ctx = _ctx()
        variations = selector.variations(source, target, ctx, limit=3)
        assert len(variations) == 3
        assert ctx.used_anchors == set()


class TestDeduplication:

    @pytest.mark.unit
    def test_collision_gets_numeric_suffix(self, source, target):
        selector = AnchorTextSelector()
        selector.heuristic_candidates = lambda s, t: iter(["Guide"])
        ctx = _ctx()
        assert selector.select_anchor(source, target, ctx) == "Guide"
        assert selector.select_anchor(source, target, ctx) == "Guide 2"
        assert selector.select_anchor(source, target, ctx) == "Guide 3"

    @pytest.mark.unit
    def test_collision_prefers_alternative(self, source, target):
        selector = AnchorTextSelector()
        selector.heuristic_candidates = lambda s, t: iter(["Guide", "Moon Guide"])
        ctx = _ctx()
        assert selector.select_anchor(source, target, ctx) == "Guide"
        assert selector.select_anchor(source, target, ctx) == "Moon Guide"

    @pytest.mark.unit
    def test_collision_is_case_insensitive(self, source, target):
        selector = AnchorTextSelector()
        selector.heuristic_candidates = lambda s, t: iter(["guide"])
        ctx = _ctx()
        ctx.mark_anchor_used("GUIDE")
        assert selector.select_anchor(source, target, ctx) == "guide 2"

    @pytest.mark.unit
    def test_suffix_attempts_exhausted(self, source, target):
        selector = AnchorTextSelector(max_suffix_attempts=2)
        selector.heuristic_candidates = lambda s, t: iter(["Guide"])
        ctx = _ctx()
        for text in ("Guide", "Guide 2", "Guide 3"):
            ctx.mark_anchor_used(text)
        assert selector.select_anchor(source, target, ctx) is None

    @pytest.mark.unit
    def test_no_candidates(self, source, target):
        selector = AnchorTextSelector()
        selector.heuristic_candidates = lambda s, t: iter(["the", "", "of a"])
        assert selector.select_anchor(source, target, _ctx()) is None

    @pytest.mark.unit
    def test_require_anchor_raises_when_nothing_usable(self, source, target):
        selector = AnchorTextSelector()
        selector.heuristic_candidates = lambda s, t: iter(["the", "of a"])
        with pytest.raises(NoAnchorError) as exc_info:
            selector.require_anchor(source, target, _ctx())
        assert exc_info.value.context == {"source_id": 1, "target_id": 2}

    @pytest.mark.unit
    def test_released_anchor_can_be_chosen_again(self, source, target):
        selector = AnchorTextSelector()
        selector.heuristic_candidates = lambda s, t: iter(["Guide"])
        ctx = _ctx()
        assert selector.require_anchor(source, target, ctx) == "Guide"
        ctx.release_anchor("Guide")
        assert selector.require_anchor(source, target, ctx) == "Guide"

    @pytest.mark.unit
    def test_usage_ceiling(self, source, target):
        store = SiloStore()
        for i in range(2):
            store.create_link(LinkRecord(f"id{i}", 1, 10 + i, 20 + i, "Moon Guide"))
        selector = AnchorTextSelector(store=store)
        selector.heuristic_candidates = lambda s, t: iter(["Moon Guide", "Lunar Guide"])
        assert selector.select_anchor(source, target, _ctx(max_anchor_usage=2)) == "Lunar Guide"
        assert selector.select_anchor(source, target, _ctx(max_anchor_usage=3)) == "Moon Guide"


class TestSuggester:

    @pytest.fixture
    def suggester(self):
        mock = MagicMock()
        mock.is_available.return_value = True
        mock.suggest_anchors.return_value = ["water", "the moon water ritual guide", "x" * 120]
        return mock

    @pytest.mark.unit
    def test_multi_word_suggestions_first(self, source, target, suggester):
        selector = AnchorTextSelector(suggester=suggester)
        ctx = _ctx()
        assert selector.select_anchor(source, target, ctx) == "moon water ritual guide"
        assert selector.last_suggested is True
        suggester.suggest_anchors.assert_called_once_with(source, target, context="Moon Magic")

    @pytest.mark.unit
    def test_suggester_disabled_by_setting(self, source, target, suggester):
        selector = AnchorTextSelector(suggester=suggester)
        selector.select_anchor(source, target, _ctx(use_suggester="0"))
        suggester.suggest_anchors.assert_not_called()

    @pytest.mark.unit
    def test_unavailable_suggester_skipped(self, source, target, suggester):
        suggester.is_available.return_value = False
        selector = AnchorTextSelector(suggester=suggester)
        assert selector.select_anchor(source, target, _ctx()) == "Moon Water"
        suggester.suggest_anchors.assert_not_called()

    @pytest.mark.unit
    def test_rate_limit_falls_back_to_heuristics(self, source, target, suggester):
        suggester.suggest_anchors.side_effect = RateLimitExceeded("limit", limit=1)
        selector = AnchorTextSelector(suggester=suggester)
        assert selector.select_anchor(source, target, _ctx()) == "Moon Water"
        assert selector.last_suggested is False
