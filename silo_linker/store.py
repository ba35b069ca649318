"""
Silo and link persistence, plus an in-memory content store.

``SiloStore`` keeps silos, link records and exclusion lists. With a
``data_dir`` every mutation is written atomically to ``silo_store.json``;
without one it is purely in-memory. ``MemoryContentStore`` holds node bodies
for tests, previews and offline runs; ``WordPressContentStore`` in
``wordpress_content`` is the networked equivalent.
"""

from __future__ import annotations

import json
import logging
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set

from silo_linker.errors import NotFoundError, PersistError
from silo_linker.models import (
    LinkRecord,
    LinkStatus,
    LinkingMode,
    Node,
    Silo,
    SiloMember,
)
from silo_linker.text_utils import MAX_ANCHOR_CHARS

logger = logging.getLogger("silo_store")

STORE_FILENAME = "silo_store.json"
DEFAULT_ANCHOR_WARNING_THRESHOLD = 5
DEFAULT_MAX_ANCHOR_USAGE = 10

EXCLUSION_TARGET = "target"
EXCLUSION_ANCHOR = "anchor"


def _now_iso() -> str:
    """Return the current UTC timestamp in ISO 8601 format."""
    return datetime.now(timezone.utc).isoformat()


def _load_json(path: Path, default: Any = None) -> Any:
    """Load JSON from *path*, returning *default* when the file is missing or corrupt."""
    if default is None:
        default = {}
    try:
        with open(path, "r", encoding="utf-8") as fh:
            return json.load(fh)
    except (FileNotFoundError, json.JSONDecodeError):
        return default


def _save_json(path: Path, data: Any) -> None:
    """Write *data* as pretty-printed JSON to *path*."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".tmp")
    with open(tmp, "w", encoding="utf-8") as fh:
        json.dump(data, fh, indent=2, default=str)
    tmp.replace(path)


# ---------------------------------------------------------------------------
# SiloStore
# ---------------------------------------------------------------------------


class SiloStore:
    """Silos, link records and exclusion lists."""

    def __init__(self, data_dir: Optional[Path] = None):
        self.data_dir = Path(data_dir) if data_dir else None
        self._silos: Dict[int, Silo] = {}
        self._links: Dict[str, LinkRecord] = {}
        self._excluded_targets: Set[int] = set()
        self._excluded_anchors: Set[str] = set()
        self._load()

    # -- Persistence --------------------------------------------------------

    @property
    def path(self) -> Optional[Path]:
        return self.data_dir / STORE_FILENAME if self.data_dir else None

    def _load(self) -> None:
        if self.path is None:
            return
        data = _load_json(self.path, default={})
        for raw in data.get("silos", []):
            silo = Silo.from_dict(raw)
            self._silos[silo.silo_id] = silo
        for raw in data.get("links", []):
            link = LinkRecord.from_dict(raw)
            self._links[link.link_id] = link
        self._excluded_targets = {int(x) for x in data.get("excluded_targets", [])}
        self._excluded_anchors = {str(x).lower() for x in data.get("excluded_anchors", [])}
        logger.info(
            "Loaded %d silos and %d links from %s",
            len(self._silos), len(self._links), self.path,
        )

    def _save(self) -> None:
        if self.path is None:
            return
        data = {
            "silos": [s.to_dict() for s in self._silos.values()],
            "links": [l.to_dict() for l in self._links.values()],
            "excluded_targets": sorted(self._excluded_targets),
            "excluded_anchors": sorted(self._excluded_anchors),
            "updated_at": _now_iso(),
        }
        try:
            _save_json(self.path, data)
        except OSError as exc:
            raise PersistError(f"Could not write {self.path}: {exc}") from exc

    # -- Silos --------------------------------------------------------------

    def create_silo(
        self,
        name: str,
        hub_id: Optional[int] = None,
        member_ids: Sequence[int] = (),
        linking_mode: str = LinkingMode.LINEAR.value,
        settings: Optional[Dict[str, Any]] = None,
    ) -> Silo:
        """Create a silo; members keep the given order as their positions."""
        silo_id = max(self._silos, default=0) + 1
        members: List[SiloMember] = []
        seen: Set[int] = set()
        for node_id in member_ids:
            node_id = int(node_id)
            if node_id == hub_id or node_id in seen:
                continue
            seen.add(node_id)
            members.append(SiloMember(node_id=node_id, position=len(members)))
        silo = Silo(
            silo_id=silo_id,
            name=name,
            hub_id=int(hub_id) if hub_id is not None else None,
            members=members,
            linking_mode=LinkingMode.from_string(linking_mode),
            settings=dict(settings or {}),
        )
        self._silos[silo_id] = silo
        self._save()
        logger.info("Created silo %d %r with %d members", silo_id, name, len(members))
        return silo

    def add_silo(self, silo: Silo) -> Silo:
        self._silos[silo.silo_id] = silo
        self._save()
        return silo

    def get_silo(self, silo_id: int) -> Optional[Silo]:
        return self._silos.get(silo_id)

    def list_silos(self) -> List[Silo]:
        return sorted(self._silos.values(), key=lambda s: s.silo_id)

    def delete_silo(self, silo_id: int) -> bool:
        if self._silos.pop(silo_id, None) is None:
            return False
        self._links = {k: v for k, v in self._links.items() if v.silo_id != silo_id}
        self._save()
        return True

    def get_members(self, silo_id: int) -> List[SiloMember]:
        silo = self._silos.get(silo_id)
        if silo is None:
            return []
        return sorted(silo.members, key=lambda m: m.position)

    def silos_for_node(self, node_id: int) -> List[Silo]:
        return [s for s in self.list_silos() if s.contains(node_id)]

    # -- Links --------------------------------------------------------------

    def has_active_link(self, silo_id: int, source_id: int, target_id: int) -> bool:
        return any(
            l.is_active and l.silo_id == silo_id and l.source_id == source_id and l.target_id == target_id
            for l in self._links.values()
        )

    def create_link(self, record: LinkRecord) -> LinkRecord:
        """Persist a new active link, enforcing the link invariants."""
        if record.source_id == record.target_id:
            raise PersistError(f"Refusing self-link on node {record.source_id}")
        if not record.anchor_text or len(record.anchor_text) > MAX_ANCHOR_CHARS:
            raise PersistError(f"Invalid anchor text length for link {record.link_id}")
        if record.link_id in self._links:
            raise PersistError(f"Link id {record.link_id} already exists")
        if self.has_active_link(record.silo_id, record.source_id, record.target_id):
            raise PersistError(
                f"Active link {record.source_id} -> {record.target_id} already exists in silo {record.silo_id}"
            )
        self._links[record.link_id] = record
        try:
            self._save()
        except PersistError:
            del self._links[record.link_id]
            raise
        return record

    def get_link(self, link_id: str) -> Optional[LinkRecord]:
        return self._links.get(link_id)

    def delete_link(self, link_id: str) -> bool:
        if self._links.pop(link_id, None) is None:
            return False
        self._save()
        return True

    def update_link(self, link_id: str, **fields: Any) -> LinkRecord:
        link = self._links.get(link_id)
        if link is None:
            raise NotFoundError(f"Link {link_id} not found", link_id=link_id)
        updated = replace(link, **fields, updated_at=_now_iso())
        self._links[link_id] = updated
        self._save()
        return updated

    def get_links(self, silo_id: Optional[int] = None, status: Optional[str] = None) -> List[LinkRecord]:
        return [
            l for l in self._links.values()
            if (silo_id is None or l.silo_id == silo_id) and (status is None or l.status == status)
        ]

    def get_links_from(
        self, node_id: int, silo_id: Optional[int] = None, include_removed: bool = False
    ) -> List[LinkRecord]:
        links = [
            l for l in self._links.values()
            if l.source_id == node_id
            and (silo_id is None or l.silo_id == silo_id)
            and (include_removed or l.is_active)
        ]
        return sorted(links, key=lambda l: l.position)

    def mark_removed(self, node_id: int, silo_id: Optional[int] = None) -> int:
        """Mark a node's active outgoing links removed; returns how many changed."""
        now = _now_iso()
        changed = 0
        for link_id, link in list(self._links.items()):
            if link.source_id != node_id or not link.is_active:
                continue
            if silo_id is not None and link.silo_id != silo_id:
                continue
            self._links[link_id] = replace(link, status=LinkStatus.REMOVED.value, updated_at=now)
            changed += 1
        if changed:
            self._save()
        return changed

    def purge_removed(self, silo_id: Optional[int] = None) -> int:
        """Delete removed link records; returns how many were deleted."""
        doomed = [
            k for k, l in self._links.items()
            if not l.is_active and (silo_id is None or l.silo_id == silo_id)
        ]
        for link_id in doomed:
            del self._links[link_id]
        if doomed:
            self._save()
        return len(doomed)

    # -- Exclusions ---------------------------------------------------------

    def add_exclusion(self, kind: str, value: Any) -> None:
        if kind == EXCLUSION_TARGET:
            self._excluded_targets.add(int(value))
        elif kind == EXCLUSION_ANCHOR:
            self._excluded_anchors.add(str(value).strip().lower())
        else:
            raise ValueError(f"Unknown exclusion kind: {kind!r}")
        self._save()

    def remove_exclusion(self, kind: str, value: Any) -> bool:
        if kind == EXCLUSION_TARGET:
            bucket: Set[Any] = self._excluded_targets
            key: Any = int(value)
        elif kind == EXCLUSION_ANCHOR:
            bucket = self._excluded_anchors
            key = str(value).strip().lower()
        else:
            raise ValueError(f"Unknown exclusion kind: {kind!r}")
        if key not in bucket:
            return False
        bucket.discard(key)
        self._save()
        return True

    def is_excluded_target(self, node_id: int) -> bool:
        return node_id in self._excluded_targets

    def is_excluded_anchor(self, text: str) -> bool:
        return (text or "").strip().lower() in self._excluded_anchors

    # -- Anchor usage -------------------------------------------------------

    def anchor_usage_count(self, text: str) -> int:
        key = (text or "").strip().lower()
        return sum(1 for l in self._links.values() if l.is_active and l.anchor_text.lower() == key)

    def anchor_report(
        self,
        silo_id: Optional[int] = None,
        max_usage: int = DEFAULT_MAX_ANCHOR_USAGE,
        warning_threshold: int = DEFAULT_ANCHOR_WARNING_THRESHOLD,
    ) -> List[Dict[str, Any]]:
        """Usage counts per active anchor text, most used first."""
        counts: Dict[str, Dict[str, Any]] = {}
        for link in self.get_links(silo_id, LinkStatus.ACTIVE.value):
            key = link.anchor_text.lower()
            entry = counts.setdefault(key, {"anchor_text": link.anchor_text, "count": 0, "targets": []})
            entry["count"] += 1
            if link.target_id not in entry["targets"]:
                entry["targets"].append(link.target_id)
        report = []
        for entry in counts.values():
            if entry["count"] >= max_usage:
                status = "overused"
            elif entry["count"] >= warning_threshold:
                status = "warning"
            else:
                status = "ok"
            report.append({**entry, "status": status})
        report.sort(key=lambda e: (-e["count"], e["anchor_text"].lower()))
        return report


# ---------------------------------------------------------------------------
# MemoryContentStore
# ---------------------------------------------------------------------------


class MemoryContentStore:
    """Node bodies held in memory.

    Save listeners are called after every ``set_body``, the way a CMS fires
    its save hooks.
    """

    def __init__(self, nodes: Iterable[Node] = ()):
        self._nodes: Dict[int, Node] = {}
        self._listeners: List[Callable[[int], None]] = []
        for node in nodes:
            self.add_node(node)

    def add_node(self, node: Node) -> None:
        self._nodes[node.node_id] = replace(node, categories=list(node.categories))

    def add_save_listener(self, callback: Callable[[int], None]) -> None:
        self._listeners.append(callback)

    def _require(self, node_id: int) -> Node:
        node = self._nodes.get(node_id)
        if node is None:
            raise NotFoundError(f"Node {node_id} not found", node_id=node_id)
        return node

    def get_node(self, node_id: int) -> Optional[Node]:
        node = self._nodes.get(node_id)
        return replace(node, categories=list(node.categories)) if node else None

    def get_body(self, node_id: int) -> str:
        return self._require(node_id).body

    def set_body(self, node_id: int, body: str) -> None:
        node = self._require(node_id)
        self._nodes[node_id] = replace(node, body=body)
        for callback in self._listeners:
            callback(node_id)

    def get_permalink(self, node_id: int) -> str:
        node = self._require(node_id)
        return node.permalink or f"/?p={node_id}"

    def get_publish_state(self, node_id: int) -> str:
        return self._require(node_id).status

    def get_categories(self, node_id: int) -> List[str]:
        return list(self._require(node_id).categories)
