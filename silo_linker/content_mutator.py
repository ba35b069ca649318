"""
Reversible link markup in document bodies.

Each generated link is wrapped in a start/end comment marker pair keyed by
the link id:

    <!--ssp-link-ab12cd34ef56--><a href="..." class="ssp-internal-link"
    data-ssp-link-id="ab12cd34ef56">moon water</a><!--/ssp-link-ab12cd34ef56-->

The wrapped text is always a verbatim slice of the original body, so
``remove`` restores the body exactly. Writes go through ``NodeWriteGuard``
leases so the content store's save notifications cannot re-enter the
engine for a node that is being written.
"""

from __future__ import annotations

import html
import logging
import math
import re
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional

from silo_linker.errors import InvalidStateError, NoAttachableTextError
from silo_linker.models import LinkRecord, Node
from silo_linker.text_utils import (
    STOPWORDS,
    cased_words,
    find_linkable_span,
    is_valid_anchor,
    protected_ranges,
    significant_title_words,
    word_windows,
)

logger = logging.getLogger("content_mutator")

MARKER_PREFIX = "ssp-link-"
LINK_CLASS = "ssp-internal-link"
PARTIAL_MATCH_RATIO = 0.6

_ANCHOR_INNER_RE = re.compile(r"<a\b[^>]*>(?P<text>.*?)</a\s*>", re.DOTALL | re.IGNORECASE)
_HREF_RE = re.compile(r"href=\"(?P<href>[^\"]*)\"", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")


@dataclass
class Attachment:
    """The body slice a link will wrap."""

    start: int
    end: int
    text: str
    strategy: str


@dataclass
class InsertResult:
    body: str
    matched_text: str
    strategy: str
    offset: int


@dataclass
class MarkerMatch:
    link_id: str
    url: str
    text: str
    start: int
    end: int


# ---------------------------------------------------------------------------
# Re-entrancy guard
# ---------------------------------------------------------------------------


class NodeWriteGuard:
    """Per-node write leases.

    A lease is held while the engine writes a node's body. Save hooks check
    ``is_leased`` and ignore notifications for leased nodes.
    """

    def __init__(self):
        self._leases: Dict[int, str] = {}

    def is_leased(self, node_id: int) -> bool:
        return node_id in self._leases

    @contextmanager
    def lease(self, node_id: int) -> Iterator[str]:
        if node_id in self._leases:
            raise InvalidStateError(f"Node {node_id} is already being written", node_id=node_id)
        token = uuid.uuid4().hex
        self._leases[node_id] = token
        try:
            yield token
        finally:
            if self._leases.get(node_id) == token:
                del self._leases[node_id]


# ---------------------------------------------------------------------------
# ContentMutator
# ---------------------------------------------------------------------------


class ContentMutator:
    """Inserts and removes marked link elements."""

    def __init__(self, marker_prefix: str = MARKER_PREFIX, link_class: str = LINK_CLASS):
        self.marker_prefix = marker_prefix
        self.link_class = link_class
        prefix = re.escape(marker_prefix)
        self._marker_re = re.compile(
            r"<!--\s*" + prefix + r"(?P<id>[\w-]+)\s*-->(?P<inner>.*?)"
            r"<!--\s*/" + prefix + r"(?P=id)\s*-->",
            re.DOTALL,
        )

    # -- Markup -------------------------------------------------------------

    def build_link_html(self, link_id: str, url: str, inner_html: str) -> str:
        """Marker-wrapped link element; ``inner_html`` is inserted as-is."""
        return (
            f"<!--{self.marker_prefix}{link_id}-->"
            f'<a href="{html.escape(url or "", quote=True)}" class="{self.link_class}" '
            f'data-ssp-link-id="{link_id}">{inner_html}</a>'
            f"<!--/{self.marker_prefix}{link_id}-->"
        )

    def _marker_pattern(self, link_id: Optional[str]) -> "re.Pattern[str]":
        if link_id is None:
            return self._marker_re
        prefix = re.escape(self.marker_prefix)
        ident = re.escape(str(link_id))
        return re.compile(
            r"<!--\s*" + prefix + ident + r"\s*-->(?P<inner>.*?)"
            r"<!--\s*/" + prefix + ident + r"\s*-->",
            re.DOTALL,
        )

    @staticmethod
    def _inner_text(inner: str) -> str:
        match = _ANCHOR_INNER_RE.search(inner)
        if match:
            return match.group("text")
        return _TAG_RE.sub("", inner)

    def list_markers(self, body: str) -> List[MarkerMatch]:
        markers: List[MarkerMatch] = []
        for match in self._marker_re.finditer(body or ""):
            inner = match.group("inner")
            href = _HREF_RE.search(inner)
            markers.append(
                MarkerMatch(
                    link_id=match.group("id"),
                    url=html.unescape(href.group("href")) if href else "",
                    text=self._inner_text(inner),
                    start=match.start(),
                    end=match.end(),
                )
            )
        return markers

    def has_marker(self, body: str, link_id: str) -> bool:
        return self._marker_pattern(link_id).search(body or "") is not None

    # -- Attachment search --------------------------------------------------

    def find_attachment(self, body: str, anchor_text: str, target_title: str) -> Optional[Attachment]:
        """Find the first body slice to wrap.

        Tries the anchor itself, the target title, a partial run of anchor
        words, then title phrases. Text inside tags, comments, existing links
        and code blocks is never considered.
        """
        if not body:
            return None
        ranges = protected_ranges(body)

        def _try(phrase: str, strategy: str) -> Optional[Attachment]:
            span = find_linkable_span(body, phrase, ranges=ranges)
            if span is None:
                return None
            text = body[span[0]:span[1]]
            if not is_valid_anchor(text):
                return None
            return Attachment(span[0], span[1], text, strategy)

        anchor_words = (anchor_text or "").split()
        title = " ".join((target_title or "").split())

        if anchor_words:
            found = _try(" ".join(anchor_words), "exact")
            if found:
                return found

        if title:
            found = _try(title, "title")
            if found:
                return found

        count = len(anchor_words)
        if count > 1:
            minimum = max(1, math.ceil(count * PARTIAL_MATCH_RATIO))
            for size in range(count - 1, minimum - 1, -1):
                for window in word_windows(anchor_words, size):
                    found = _try(" ".join(window), "partial")
                    if found:
                        return found

        title_words = cased_words(title)
        for window in word_windows(title_words, 2):
            if all(w.lower() in STOPWORDS for w in window):
                continue
            found = _try(" ".join(window), "title_phrase")
            if found:
                return found
        for word in significant_title_words(title):
            found = _try(word, "title_word")
            if found:
                return found
        return None

    # -- Insert / remove ----------------------------------------------------

    def insert(self, source: Node, target: Node, link: LinkRecord, target_url: str) -> InsertResult:
        """Wrap the first attachable occurrence in ``source.body`` with ``link``.

        Raises
        ------
        InvalidStateError
            If either node is unpublished or the link is already marked.
        NoAttachableTextError
            If no body text can carry the link.
        """
        if not source.is_published or not target.is_published:
            raise InvalidStateError(
                f"Refusing to link {source.node_id} -> {target.node_id}: node not published",
                source_id=source.node_id,
                target_id=target.node_id,
            )
        body = source.body or ""
        if self.has_marker(body, link.link_id):
            raise InvalidStateError(f"Link {link.link_id} is already present in node {source.node_id}")

        attachment = self.find_attachment(body, link.anchor_text, target.title)
        if attachment is None:
            raise NoAttachableTextError(
                f"No text in node {source.node_id} can carry anchor {link.anchor_text!r}",
                source_id=source.node_id,
                target_id=target.node_id,
            )

        element = self.build_link_html(link.link_id, target_url, attachment.text)
        new_body = body[:attachment.start] + element + body[attachment.end:]
        logger.debug(
            "Attached link %s in node %d via %s: %r",
            link.link_id, source.node_id, attachment.strategy, attachment.text,
        )
        return InsertResult(new_body, attachment.text, attachment.strategy, attachment.start)

    def remove(self, body: str, link_id: Optional[str] = None) -> str:
        """Replace one marker construct (or all of them) with its plain text."""
        pattern = self._marker_pattern(link_id)
        return pattern.sub(lambda m: self._inner_text(m.group("inner")), body or "")

    def replace_anchor_text(self, body: str, link_id: str, new_text: str) -> str:
        """Rewrite the visible text of one marked link, keeping its target."""
        pattern = self._marker_pattern(link_id)
        match = pattern.search(body or "")
        if match is None:
            raise NoAttachableTextError(f"Link {link_id} has no marker in this body", link_id=link_id)
        href = _HREF_RE.search(match.group("inner"))
        url = html.unescape(href.group("href")) if href else ""
        element = self.build_link_html(link_id, url, html.escape(new_text, quote=False))
        return body[:match.start()] + element + body[match.end():]
