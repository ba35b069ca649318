"""
Tests for reversible link markup and the node write guard.
"""
from __future__ import annotations

import pytest

from silo_linker.content_mutator import ContentMutator, NodeWriteGuard
from silo_linker.errors import InvalidStateError, NoAttachableTextError
from silo_linker.models import LinkRecord, Node


BODY = (
    "<p>Our Moon Water recipe is simple.</p>\n"
    '<p>See <a href="/other">moon water tips</a> and <code>moon water</code>.</p>\n'
    "<p>Store the moon water in glass.</p>"
)


@pytest.fixture
def mutator():
    return ContentMutator()


def _link(anchor="moon water", link_id="abc123def456"):
    return LinkRecord(link_id, 1, 1, 2, anchor)


def _nodes(body=BODY, target_title="Making Moon Water", status="publish"):
    return Node(1, "Source", body), Node(2, target_title, "", status=status)


class TestInsert:

    @pytest.mark.unit
    def test_insert_wraps_first_free_occurrence(self, mutator):
        source, target = _nodes()
        result = mutator.insert(source, target, _link(), "https://site.test/moon-water/")
        assert result.strategy == "exact"
        assert result.matched_text == "Moon Water"
        assert (
            '<!--ssp-link-abc123def456--><a href="https://site.test/moon-water/" '
            'class="ssp-internal-link" data-ssp-link-id="abc123def456">Moon Water</a>'
            "<!--/ssp-link-abc123def456-->"
        ) in result.body
        assert result.offset == BODY.index("Moon Water")

    @pytest.mark.unit
    def test_insert_skips_existing_links_and_code(self, mutator):
        body = '<p>See <a href="/x">moon water</a> or <code>moon water</code> then moon water.</p>'
        source, target = _nodes(body)
        result = mutator.insert(source, target, _link(), "/t")
        assert result.offset == body.rindex("moon water")
        assert mutator.remove(result.body) == body

    @pytest.mark.unit
    def test_round_trip_restores_body(self, mutator):
        source, target = _nodes()
        first = mutator.insert(source, target, _link(link_id="first"), "/a")
        source.body = first.body
        second = mutator.insert(source, target, _link(link_id="second"), "/b")
        assert len(mutator.list_markers(second.body)) == 2
        assert mutator.remove(mutator.remove(second.body, "second"), "first") == BODY
        assert mutator.remove(second.body) == BODY

    @pytest.mark.unit
    def test_title_fallback(self, mutator):
        source, target = _nodes("<p>Learn about Making Moon Water at home.</p>")
        result = mutator.insert(source, target, _link("lunar liquid"), "/t")
        assert result.strategy == "title"
        assert result.matched_text == "Making Moon Water"

    @pytest.mark.unit
    def test_partial_match(self, mutator):
        source, target = _nodes("<p>Try a full moon ritual tonight.</p>", target_title="Rituals")
        result = mutator.insert(source, target, _link("full moon ritual guide"), "/t")
        assert result.strategy == "partial"
        assert result.matched_text == "full moon ritual"

    @pytest.mark.unit
    def test_title_word_fallback(self, mutator):
        source, target = _nodes("<p>Keep it near the window.</p>", target_title="Window Altars")
        result = mutator.insert(source, target, _link("sacred spaces"), "/t")
        assert result.strategy == "title_word"
        assert result.matched_text == "window"

    @pytest.mark.unit
    def test_no_attachable_text(self, mutator):
        source, target = _nodes("<p>Unrelated prose.</p>")
        with pytest.raises(NoAttachableTextError):
            mutator.insert(source, target, _link(), "/t")

    @pytest.mark.unit
    def test_unpublished_target_rejected(self, mutator):
        source, target = _nodes(status="draft")
        with pytest.raises(InvalidStateError):
            mutator.insert(source, target, _link(), "/t")

    @pytest.mark.unit
    def test_duplicate_marker_rejected(self, mutator):
        source, target = _nodes()
        source.body = mutator.insert(source, target, _link(), "/t").body
        with pytest.raises(InvalidStateError):
            mutator.insert(source, target, _link(), "/t")

    @pytest.mark.unit
    def test_url_escaped(self, mutator):
        source, target = _nodes()
        result = mutator.insert(source, target, _link(), '/t?a=1&b="2"')
        assert 'href="/t?a=1&amp;b=&quot;2&quot;"' in result.body
        assert mutator.list_markers(result.body)[0].url == '/t?a=1&b="2"'


class TestRemoveAndReplace:

    @pytest.mark.unit
    def test_remove_legacy_spaced_markers(self, mutator):
        body = '<p>A <!-- ssp-link-old1 --><a href="/x">rite</a><!-- /ssp-link-old1 --> here.</p>'
        assert mutator.remove(body) == "<p>A rite here.</p>"

    @pytest.mark.unit
    def test_remove_unknown_id_is_noop(self, mutator):
        assert mutator.remove(BODY, "nope") == BODY

    @pytest.mark.unit
    def test_replace_anchor_text(self, mutator):
        source, target = _nodes()
        body = mutator.insert(source, target, _link(), "/t").body
        updated = mutator.replace_anchor_text(body, "abc123def456", "lunar water & salt")
        marker = mutator.list_markers(updated)[0]
        assert marker.text == "lunar water &amp; salt"
        assert marker.url == "/t"
        with pytest.raises(NoAttachableTextError):
            mutator.replace_anchor_text(BODY, "abc123def456", "x")


class TestNodeWriteGuard:

    @pytest.mark.unit
    def test_lease_lifecycle(self):
        guard = NodeWriteGuard()
        with guard.lease(5):
            assert guard.is_leased(5)
            with pytest.raises(InvalidStateError):
                with guard.lease(5):
                    pass
            assert guard.is_leased(5)
        assert not guard.is_leased(5)

    @pytest.mark.unit
    def test_lease_released_on_error(self):
        guard = NodeWriteGuard()
        with pytest.raises(RuntimeError):
            with guard.lease(7):
                raise RuntimeError("write failed")
        assert not guard.is_leased(7)
