"""
Silo Link Engine
================

Builds the internal link graph of a content silo. For a silo and its linking
mode the engine plans an ordered edge list, then materializes each edge on
its own: anchor text selection, insertion point location, marker-wrapped
link insertion and link record persistence. A failing edge is logged,
recorded on the run context and skipped; it never aborts the run.

Linking modes: linear, chained, cross_linking, star_hub, hub_chain,
ai_contextual, custom. Silos without a hub fall back to hub-free variants
(star_hub and hub_chain become chained).

Usage:
    from silo_linker.link_engine import LinkGraphBuilder
    from silo_linker.store import MemoryContentStore, SiloStore

    engine = LinkGraphBuilder(SiloStore(), MemoryContentStore(nodes))
    created = engine.generate(silo_id=1)
    plan = engine.preview(silo_id=1)
    engine.remove_links(node_id=42, silo_id=1)
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from silo_linker.anchor_selector import AnchorTextSelector
from silo_linker.content_mutator import ContentMutator, NodeWriteGuard
from silo_linker.errors import (
    InvalidStateError,
    NoAnchorError,
    NoAttachableTextError,
    NotFoundError,
    PersistError,
    SiloLinkerError,
    SuggesterError,
)
from silo_linker.insertion import InsertionPointLocator
from silo_linker.models import (
    HUB_TOKEN,
    EdgeSpec,
    LinkRecord,
    LinkSettings,
    LinkStatus,
    LinkingMode,
    Node,
    PreviewEntry,
    RunContext,
    Silo,
    SkipReason,
)
from silo_linker.relatedness import RelatednessScorer
from silo_linker.text_utils import MAX_ANCHOR_CHARS, clean_anchor

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger("link_engine")
logger.setLevel(logging.DEBUG)

if not logger.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(
        logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    _handler.setLevel(logging.INFO)
    logger.addHandler(_handler)

# Edge rule labels
RULE_HUB_TO_FIRST = "hub_to_first"
RULE_CHAIN = "chain"
RULE_ADJACENT = "adjacent"
RULE_MESH = "mesh"
RULE_CONTEXTUAL = "contextual"
RULE_CUSTOM = "custom"
RULE_SUPPORT_TO_HUB = "support_to_hub"
RULE_HUB_TO_SUPPORT = "hub_to_support"


def new_link_id() -> str:
    return uuid.uuid4().hex[:12]


class LinkGraphBuilder:
    """Plans and materializes silo link graphs.

    Parameters
    ----------
    store : SiloStore-like
        Silo, link and exclusion persistence.
    content_store : content store
        ``get_node``, ``get_body``, ``set_body``, ``get_permalink``,
        ``get_publish_state``.
    suggester : optional
        Anchor suggestion service; heuristics are used when absent.
    """

    def __init__(
        self,
        store: Any,
        content_store: Any,
        suggester: Any = None,
        selector: Optional[AnchorTextSelector] = None,
        locator: Optional[InsertionPointLocator] = None,
        mutator: Optional[ContentMutator] = None,
        guard: Optional[NodeWriteGuard] = None,
    ):
        self.store = store
        self.content_store = content_store
        self.suggester = suggester
        self.selector = selector or AnchorTextSelector(suggester=suggester, store=store)
        self.locator = locator or InsertionPointLocator()
        self.mutator = mutator or ContentMutator()
        self.guard = guard or NodeWriteGuard()

    # -----------------------------------------------------------------------
    # Loading
    # -----------------------------------------------------------------------

    def _require_silo(self, silo_id: int) -> Silo:
        silo = self.store.get_silo(silo_id)
        if silo is None:
            raise NotFoundError(f"Silo {silo_id} not found", silo_id=silo_id)
        return silo

    def _load_nodes(self, silo: Silo) -> Dict[int, Node]:
        """Fetch every silo node once; missing or unreadable nodes are dropped with a warning."""
        nodes: Dict[int, Node] = {}
        for node_id in silo.all_node_ids:
            try:
                node = self.content_store.get_node(node_id)
            except SiloLinkerError as exc:
                logger.warning(
                    "Silo %d: could not load node %d, leaving it out: %s",
                    silo.silo_id, node_id, exc.message,
                )
                continue
            if node is None:
                logger.warning("Silo %d: node %d not found, leaving it out", silo.silo_id, node_id)
                continue
            nodes[node_id] = node
        return nodes

    # -----------------------------------------------------------------------
    # Topology
    # -----------------------------------------------------------------------

    def plan_edges(
        self,
        silo: Silo,
        settings: LinkSettings,
        nodes: Dict[int, Node],
        restrict_to: Optional[Iterable[int]] = None,
    ) -> List[EdgeSpec]:
        """Ordered, de-duplicated edge plan for ``silo`` under ``settings``."""
        hub = silo.hub_id if silo.hub_id in nodes else None
        if silo.hub_id is not None and hub is None:
            logger.warning("Silo %d: hub %d is missing, planning without hub", silo.silo_id, silo.hub_id)
        supports = [n for n in silo.support_ids if n in nodes]

        mode = settings.linking_mode
        if mode in (LinkingMode.STAR_HUB, LinkingMode.HUB_CHAIN) and hub is None:
            logger.warning(
                "Silo %d: %s needs a hub, falling back to chained without hub",
                silo.silo_id, mode.value,
            )
            mode = LinkingMode.CHAINED

        if mode == LinkingMode.LINEAR:
            edges = self._plan_linear(hub, supports, settings)
        elif mode == LinkingMode.CHAINED:
            edges = self._plan_chained(hub, supports, settings)
        elif mode == LinkingMode.CROSS_LINKING:
            edges = self._plan_cross_linking(hub, supports, settings)
        elif mode == LinkingMode.STAR_HUB:
            edges = self._hub_edges(hub, supports, settings)
        elif mode == LinkingMode.HUB_CHAIN:
            edges = self._plan_hub_chain(hub, supports, settings)
        elif mode == LinkingMode.AI_CONTEXTUAL:
            edges = self._plan_contextual(hub, supports, settings, nodes)
        else:
            edges = self._plan_custom(silo, hub, supports, settings)

        if restrict_to is not None:
            wanted = set(restrict_to)
            edges = [e for e in edges if e.source_id in wanted or e.target_id in wanted]

        seen: Set[tuple] = set()
        plan: List[EdgeSpec] = []
        for edge in edges:
            pair = (edge.source_id, edge.target_id)
            if pair in seen:
                continue
            seen.add(pair)
            plan.append(edge)
        logger.debug("Silo %d: %s plan has %d edges", silo.silo_id, mode.value, len(plan))
        return plan

    @staticmethod
    def _adjacency(supports: Sequence[int]) -> List[EdgeSpec]:
        edges: List[EdgeSpec] = []
        for index, node_id in enumerate(supports):
            if index + 1 < len(supports):
                edges.append(EdgeSpec(node_id, supports[index + 1], RULE_ADJACENT))
            if index > 0:
                edges.append(EdgeSpec(node_id, supports[index - 1], RULE_ADJACENT))
        return edges

    @staticmethod
    def _hub_edges(
        hub: Optional[int],
        supports: Sequence[int],
        settings: LinkSettings,
        supports_to_hub: Optional[bool] = None,
        hub_to_supports: Optional[bool] = None,
    ) -> List[EdgeSpec]:
        """support -> hub and capped hub -> support edges, as the settings ask."""
        if hub is None:
            return []
        to_hub = settings.supports_to_hub if supports_to_hub is None else supports_to_hub
        from_hub = settings.hub_to_supports if hub_to_supports is None else hub_to_supports
        edges: List[EdgeSpec] = []
        if to_hub:
            edges.extend(EdgeSpec(s, hub, RULE_SUPPORT_TO_HUB) for s in supports)
        if from_hub:
            edges.extend(
                EdgeSpec(hub, s, RULE_HUB_TO_SUPPORT) for s in supports[: settings.max_hub_links]
            )
        return edges

    def _plan_linear(self, hub, supports, settings) -> List[EdgeSpec]:
        edges: List[EdgeSpec] = []
        if hub is not None and supports:
            edges.append(EdgeSpec(hub, supports[0], RULE_HUB_TO_FIRST))
        edges.extend(
            EdgeSpec(supports[i], supports[i + 1], RULE_CHAIN) for i in range(len(supports) - 1)
        )
        if hub is None:
            return edges
        edges.extend(self._hub_edges(hub, supports, settings, hub_to_supports=False))
        if settings.hub_to_supports:
            # hub -> first support already counts toward max_hub_links
            edges.extend(
                EdgeSpec(hub, s, RULE_HUB_TO_SUPPORT) for s in supports[1: settings.max_hub_links]
            )
        return edges

    def _plan_chained(self, hub, supports, settings) -> List[EdgeSpec]:
        return self._adjacency(supports) + self._hub_edges(hub, supports, settings)

    def _plan_cross_linking(self, hub, supports, settings) -> List[EdgeSpec]:
        members = ([hub] if hub is not None else []) + list(supports)
        cap = settings.max_cross_links_per_post
        edges: List[EdgeSpec] = []
        for source in members:
            targets = [t for t in members if t != source][:cap]
            edges.extend(EdgeSpec(source, t, RULE_MESH) for t in targets)
        return edges + self._hub_edges(hub, supports, settings)

    def _plan_hub_chain(self, hub, supports, settings) -> List[EdgeSpec]:
        edges = self._hub_edges(hub, supports, settings, hub_to_supports=False)
        edges.extend(self._adjacency(supports))
        edges.extend(self._hub_edges(hub, supports, settings, supports_to_hub=False))
        return edges

    def _plan_contextual(self, hub, supports, settings, nodes) -> List[EdgeSpec]:
        members = ([hub] if hub is not None else []) + list(supports)
        scorer = RelatednessScorer(hub_id=hub)
        pool = [nodes[n] for n in members]
        edges: List[EdgeSpec] = []
        for source_id in members:
            related = scorer.top_related(nodes[source_id], pool, settings.max_contextual_links)
            edges.extend(EdgeSpec(source_id, node.node_id, RULE_CONTEXTUAL) for node, _ in related)
        return edges + self._hub_edges(hub, supports, settings)

    def _plan_custom(self, silo, hub, supports, settings) -> List[EdgeSpec]:
        members = set(supports)
        if hub is not None:
            members.add(hub)
        edges: List[EdgeSpec] = []
        for rule in settings.custom_pattern:
            ends = []
            for side in (rule.source, rule.target):
                if side == HUB_TOKEN:
                    ends.append(hub)
                elif isinstance(side, int):
                    ends.append(side)
                else:
                    ends.append(None)
            source_id, target_id = ends
            if (HUB_TOKEN in (rule.source, rule.target)) and hub is None:
                logger.debug("Silo %d: skipping hub rule %s, silo has no hub", silo.silo_id, rule.to_dict())
                continue
            if source_id not in members or target_id not in members:
                logger.warning(
                    "Silo %d: skipping custom rule %s, node outside silo",
                    silo.silo_id, rule.to_dict(),
                )
                continue
            edges.append(EdgeSpec(source_id, target_id, RULE_CUSTOM))
        # Hub guarantees only apply when the custom silo asks for them
        edges.extend(
            self._hub_edges(
                hub,
                supports,
                settings,
                supports_to_hub=settings.supports_to_hub and "supports_to_hub" in settings.explicit,
                hub_to_supports=settings.hub_to_supports and "hub_to_supports" in settings.explicit,
            )
        )
        return edges

    # -----------------------------------------------------------------------
    # Edge materialization
    # -----------------------------------------------------------------------

    def _skip(
        self, ctx: RunContext, source_id: int, target_id: int, reason: SkipReason, detail: str = ""
    ) -> None:
        ctx.record_skip(source_id, target_id, reason, detail)
        level = logging.INFO if reason in (SkipReason.ALREADY_LINKED, SkipReason.SELF_LINK) else logging.WARNING
        logger.log(
            level, "Silo %d: skipped %d -> %d (%s) %s",
            ctx.silo.silo_id, source_id, target_id, reason.value, detail,
        )

    def _node(self, node_id: int, nodes: Optional[Dict[int, Node]]) -> Optional[Node]:
        if nodes is not None and node_id in nodes:
            return nodes[node_id]
        node = self.content_store.get_node(node_id)
        if node is not None and nodes is not None:
            nodes[node_id] = node
        return node

    def _is_linked(self, silo_id: int, source_id: int, target_id: int) -> bool:
        return any(l.target_id == target_id for l in self.store.get_links_from(source_id, silo_id))

    def _check_edge(
        self, ctx: RunContext, source_id: int, target_id: int, nodes: Optional[Dict[int, Node]]
    ) -> Optional[tuple]:
        """Run the pre-anchor checks; returns ``(source, target)`` or None when skipped."""
        silo_id = ctx.silo.silo_id
        if source_id == target_id:
            self._skip(ctx, source_id, target_id, SkipReason.SELF_LINK)
            return None
        if self._is_linked(silo_id, source_id, target_id):
            self._skip(ctx, source_id, target_id, SkipReason.ALREADY_LINKED)
            return None
        if self.store.is_excluded_target(target_id):
            self._skip(ctx, source_id, target_id, SkipReason.EXCLUDED_TARGET)
            return None
        source = self._node(source_id, nodes)
        target = self._node(target_id, nodes)
        if source is None or target is None:
            self._skip(ctx, source_id, target_id, SkipReason.NOT_FOUND)
            return None
        if not source.is_published or not target.is_published:
            self._skip(
                ctx, source_id, target_id, SkipReason.UNPUBLISHED,
                f"source={source.status} target={target.status}",
            )
            return None
        return source, target

    def create_edge(
        self,
        ctx: RunContext,
        source_id: int,
        target_id: int,
        nodes: Optional[Dict[int, Node]] = None,
    ) -> Optional[LinkRecord]:
        """Materialize one edge; returns the link or None when the edge was skipped.

        Engine errors never escape: whatever the pipeline raises is recorded
        as a skip for this edge.
        """
        try:
            checked = self._check_edge(ctx, source_id, target_id, nodes)
            if checked is None:
                return None
            source, target = checked
            try:
                anchor = self.selector.require_anchor(source, target, ctx)
            except NoAnchorError as exc:
                self._skip(ctx, source_id, target_id, SkipReason.NO_ANCHOR, exc.message)
                return None

            link = None
            try:
                link = self._attach(ctx, source, target, anchor)
            finally:
                # only anchors that ended up in a body stay reserved for the run
                if link is None:
                    ctx.release_anchor(anchor)
            return link
        except SiloLinkerError as exc:
            self._skip(ctx, source_id, target_id, SkipReason.PERSIST_FAILED, exc.message)
            return None

    def _attach(self, ctx: RunContext, source: Node, target: Node, anchor: str) -> Optional[LinkRecord]:
        source_id, target_id = source.node_id, target.node_id
        silo_id = ctx.silo.silo_id
        if self.store.is_excluded_anchor(anchor):
            self._skip(ctx, source_id, target_id, SkipReason.EXCLUDED_ANCHOR, anchor)
            return None

        link = LinkRecord(
            link_id=new_link_id(),
            silo_id=silo_id,
            source_id=source_id,
            target_id=target_id,
            anchor_text=anchor,
            insertion_offset=self.locator.locate(source.body, anchor),
            placement_type=ctx.settings.placement_type.value,
            position=len(self.store.get_links_from(source_id, silo_id)),
            suggested=self.selector.last_suggested,
        )

        try:
            url = self.content_store.get_permalink(target_id)
            result = self.mutator.insert(source, target, link, url)
        except NoAttachableTextError as exc:
            self._skip(ctx, source_id, target_id, SkipReason.NO_ATTACHABLE_TEXT, exc.message)
            return None
        except InvalidStateError as exc:
            self._skip(ctx, source_id, target_id, SkipReason.UNPUBLISHED, exc.message)
            return None
        except PersistError as exc:
            self._skip(ctx, source_id, target_id, SkipReason.PERSIST_FAILED, exc.message)
            return None

        try:
            self.store.create_link(link)
        except PersistError as exc:
            self._skip(ctx, source_id, target_id, SkipReason.PERSIST_FAILED, exc.message)
            return None

        try:
            with self.guard.lease(source_id):
                self.content_store.set_body(source_id, result.body)
        except SiloLinkerError as exc:
            # save listeners run after the write; a body that landed keeps its record
            if not self._body_written(source_id, result.body):
                self._discard_link(link)
                self._skip(ctx, source_id, target_id, SkipReason.PERSIST_FAILED, exc.message)
                return None
            logger.warning(
                "Silo %d: node %d saved but a save listener failed: %s",
                silo_id, source_id, exc.message,
            )

        source.body = result.body
        ctx.created.append(link)
        logger.info(
            "Silo %d: linked %d -> %d with %r (%s)",
            silo_id, source_id, target_id, result.matched_text, result.strategy,
        )
        return link

    def _body_written(self, node_id: int, body: str) -> bool:
        try:
            return self.content_store.get_body(node_id) == body
        except SiloLinkerError:
            return False

    def _discard_link(self, link: LinkRecord) -> None:
        """Roll back a link record whose body write failed."""
        try:
            self.store.delete_link(link.link_id)
        except PersistError as exc:
            logger.error("Could not roll back link record %s: %s", link.link_id, exc.message)

    # -----------------------------------------------------------------------
    # Operations
    # -----------------------------------------------------------------------

    def run(self, silo_id: int, node_ids: Optional[Sequence[int]] = None) -> RunContext:
        """Generate links and return the full run context (created and skipped)."""
        silo = self._require_silo(silo_id)
        settings = silo.link_settings()
        ctx = RunContext(silo=silo, settings=settings)
        nodes = self._load_nodes(silo)
        plan = self.plan_edges(silo, settings, nodes, node_ids)

        logger.info(
            "Silo %d (%s): generating %d planned edges in %s mode",
            silo_id, silo.name, len(plan), settings.linking_mode.value,
        )
        for edge in plan:
            self.create_edge(ctx, edge.source_id, edge.target_id, nodes)
        logger.info(
            "Silo %d: %d links created, %d edges skipped",
            silo_id, len(ctx.created), len(ctx.skipped),
        )
        return ctx

    def generate(self, silo_id: int, node_ids: Optional[Sequence[int]] = None) -> int:
        """Create the silo's links; returns the number of links created.

        Raises ``NotFoundError`` only when the silo does not exist.
        """
        return len(self.run(silo_id, node_ids).created)

    def preview(self, silo_id: int, node_ids: Optional[Sequence[int]] = None) -> Dict[int, List[Dict[str, Any]]]:
        """What ``generate`` would do, per source node, without touching anything.

        Keys are source nodes. A restricted preview holds the requested nodes
        plus the sources of planned edges pointing at them.
        """
        silo = self._require_silo(silo_id)
        settings = silo.link_settings()
        ctx = RunContext(silo=silo, settings=settings, dry_run=True)
        nodes = self._load_nodes(silo)
        plan = self.plan_edges(silo, settings, nodes, node_ids)

        wanted = set(node_ids) if node_ids is not None else None
        sources = {edge.source_id for edge in plan}
        result: Dict[int, List[Dict[str, Any]]] = {
            n: [] for n in silo.all_node_ids
            if n in nodes and (wanted is None or n in wanted or n in sources)
        }
        for edge in plan:
            checked = self._check_edge(ctx, edge.source_id, edge.target_id, nodes)
            if checked is None:
                continue
            source, target = checked
            variations = self.selector.variations(source, target, ctx)
            try:
                anchor = self.selector.require_anchor(source, target, ctx)
            except NoAnchorError as exc:
                self._skip(ctx, edge.source_id, edge.target_id, SkipReason.NO_ANCHOR, exc.message)
                continue
            if self.store.is_excluded_anchor(anchor):
                ctx.release_anchor(anchor)
                self._skip(ctx, edge.source_id, edge.target_id, SkipReason.EXCLUDED_ANCHOR, anchor)
                continue
            entry = PreviewEntry(
                target_id=target.node_id,
                target_title=target.title,
                anchor_text=anchor,
                anchor_variations=variations,
                insertion_offset=self.locator.locate(source.body, anchor),
            )
            result[edge.source_id].append(entry.to_dict())
        return result

    def remove_links(self, node_id: int, silo_id: Optional[int] = None) -> bool:
        """Strip generated links from a node and mark their records removed.

        With ``silo_id`` only that silo's markers are removed, otherwise every
        marker in the body. Returns False when the node is missing or the
        body could not be written.
        """
        node = self.content_store.get_node(node_id)
        if node is None:
            logger.warning("Cannot remove links: node %d not found", node_id)
            return False

        body = node.body or ""
        if silo_id is None:
            new_body = self.mutator.remove(body)
        else:
            new_body = body
            for link in self.store.get_links_from(node_id, silo_id):
                new_body = self.mutator.remove(new_body, link.link_id)

        if new_body != body:
            try:
                with self.guard.lease(node_id):
                    self.content_store.set_body(node_id, new_body)
            except (PersistError, InvalidStateError) as exc:
                logger.error("Failed to write node %d while removing links: %s", node_id, exc.message)
                return False

        removed = self.store.mark_removed(node_id, silo_id)
        logger.info("Node %d: removed links, %d records marked removed", node_id, removed)
        return True

    def remove_silo_links(self, silo_id: int) -> int:
        """``remove_links`` for every node of the silo; returns nodes processed."""
        silo = self._require_silo(silo_id)
        return sum(1 for node_id in silo.all_node_ids if self.remove_links(node_id, silo_id))

    def update_anchor_text(self, link_id: str, text: str) -> LinkRecord:
        """Change the visible text of an existing link, in the body and the record."""
        link = self.store.get_link(link_id)
        if link is None or link.status != LinkStatus.ACTIVE.value:
            raise NotFoundError(f"Active link {link_id} not found", link_id=link_id)
        cleaned = clean_anchor(text)
        if cleaned is None:
            raise InvalidStateError(
                f"Anchor text must be 1 to {MAX_ANCHOR_CHARS} characters with at least one "
                "meaningful word",
                link_id=link_id,
            )
        body = self.content_store.get_body(link.source_id)
        new_body = self.mutator.replace_anchor_text(body, link_id, cleaned)
        with self.guard.lease(link.source_id):
            self.content_store.set_body(link.source_id, new_body)
        return self.store.update_link(link_id, anchor_text=cleaned)

    def silo_stats(self, silo_id: int) -> Dict[str, Any]:
        silo = self._require_silo(silo_id)
        links = self.store.get_links(silo_id)
        active = [l for l in links if l.is_active]
        outgoing = {n: 0 for n in silo.all_node_ids}
        incoming = {n: 0 for n in silo.all_node_ids}
        for link in active:
            outgoing[link.source_id] = outgoing.get(link.source_id, 0) + 1
            incoming[link.target_id] = incoming.get(link.target_id, 0) + 1
        return {
            "silo_id": silo.silo_id,
            "name": silo.name,
            "linking_mode": silo.linking_mode.value,
            "hub_id": silo.hub_id,
            "member_count": len(silo.all_node_ids),
            "active_links": len(active),
            "removed_links": len(links) - len(active),
            "suggested_links": sum(1 for l in active if l.suggested),
            "outgoing": outgoing,
            "incoming": incoming,
            "orphans": [n for n, count in incoming.items() if count == 0],
        }

    def handle_node_saved(self, node_id: int) -> int:
        """Save notification from the content store.

        Ignored while the engine itself holds the node's write lease.
        Otherwise links the node into every silo that has ``auto_link`` on.
        """
        if self.guard.is_leased(node_id):
            logger.debug("Ignoring save of node %d during engine write", node_id)
            return 0
        created = 0
        for silo in self.store.silos_for_node(node_id):
            if not silo.link_settings().auto_link:
                continue
            created += self.generate(silo.silo_id, [node_id])
        return created

    def recommend_members(self, hub_id: int, candidate_ids: Sequence[int], limit: int = 10) -> List[int]:
        """Rank candidate nodes as supports for ``hub_id``, best first."""
        hub = self.content_store.get_node(hub_id)
        if hub is None:
            raise NotFoundError(f"Node {hub_id} not found", node_id=hub_id)
        candidates = [
            node for node in (self.content_store.get_node(c) for c in candidate_ids if c != hub_id)
            if node is not None
        ]
        if self.suggester is not None and self.suggester.is_available():
            try:
                return self.suggester.rank_relevant(hub, candidates, limit)
            except SuggesterError as exc:
                logger.warning("Suggester ranking failed, using lexical scores: %s", exc.message)
        ranked = RelatednessScorer().top_related(hub, candidates, limit, threshold=0.0)
        return [node.node_id for node, _ in ranked]


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def build_engine(config: Any) -> LinkGraphBuilder:
    """Wire a ``LinkGraphBuilder`` from a ``LinkerConfig``."""
    from silo_linker.store import SiloStore
    from silo_linker.suggester import ClaudeSuggester
    from silo_linker.wordpress_content import WordPressContentStore

    store = SiloStore(config.data_dir)
    content_store = WordPressContentStore(config.site_config(), timeout=config.request_timeout)
    suggester = None
    if config.use_suggester and config.anthropic_api_key:
        suggester = ClaudeSuggester(
            api_key=config.anthropic_api_key,
            model=config.suggester_model,
            cache_ttl=config.suggester_cache_ttl,
            max_requests_per_hour=config.suggester_max_requests_per_hour,
            cache_path=config.data_dir / "suggestion_cache.json" if config.data_dir else None,
        )
    engine = LinkGraphBuilder(store, content_store, suggester=suggester)
    content_store.add_save_listener(engine.handle_node_saved)
    return engine
