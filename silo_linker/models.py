"""
Data model for the silo link engine.

Nodes belong to the content store, silos and links to the silo store.
``LinkSettings.from_raw`` is the single place where loosely typed settings
(truthy strings, numeric strings, legacy "pillar" keys) become a strict
typed struct; nothing downstream re-interprets raw settings.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Union

logger = logging.getLogger("models")

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

HUB_TOKEN = "hub"
HUB_TOKEN_ALIASES = {"hub", "pillar"}
PUBLISHED_STATE = "publish"

DEFAULT_MAX_HUB_LINKS = 5
DEFAULT_MAX_CONTEXTUAL_LINKS = 3
DEFAULT_MAX_CROSS_LINKS = 5
DEFAULT_MAX_ANCHOR_USAGE = 10

_TRUTHY = {"true", "1", "yes", "on"}

# Legacy setting keys mapped to their current names
_SETTING_ALIASES = {
    "pillar_to_supports": "hub_to_supports",
    "supports_to_pillar": "supports_to_hub",
    "max_pillar_links": "max_hub_links",
    "use_ai_anchors": "use_suggester",
}


def _now_iso() -> str:
    """Return the current UTC timestamp in ISO 8601 format."""
    return datetime.now(timezone.utc).isoformat()


def _as_bool(value: Any, default: bool) -> bool:
    """Normalize the truthy encodings settings arrive in (True, 1, "1", "true")."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY
    return bool(value)


def _as_int(value: Any, default: int) -> int:
    if value is None or isinstance(value, bool):
        return default
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        logger.warning("Ignoring non-numeric setting value %r, using %d", value, default)
        return default
    return max(number, 0)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class LinkingMode(str, Enum):
    """Topology policy for a silo."""
    LINEAR = "linear"
    CHAINED = "chained"
    CROSS_LINKING = "cross_linking"
    STAR_HUB = "star_hub"
    HUB_CHAIN = "hub_chain"
    AI_CONTEXTUAL = "ai_contextual"
    CUSTOM = "custom"

    @classmethod
    def from_string(cls, value: Union[str, "LinkingMode", None]) -> "LinkingMode":
        if isinstance(value, cls):
            return value
        if not value:
            return cls.LINEAR
        normalized = str(value).strip().lower().replace("-", "_")
        for member in cls:
            if member.value == normalized:
                return member
        raise ValueError(f"Unknown linking mode: {value!r}")


class PlacementType(str, Enum):
    NATURAL = "natural"
    FIRST_PARAGRAPH = "first_paragraph"

    @classmethod
    def from_string(cls, value: Any) -> "PlacementType":
        if isinstance(value, cls):
            return value
        normalized = str(value or "").strip().lower()
        if normalized in ("first_paragraph", "first-paragraph", "top"):
            return cls.FIRST_PARAGRAPH
        return cls.NATURAL


class LinkStatus(str, Enum):
    ACTIVE = "active"
    REMOVED = "removed"


class SkipReason(str, Enum):
    """Why a planned edge was not materialized."""
    SELF_LINK = "self_link"
    ALREADY_LINKED = "already_linked"
    EXCLUDED_TARGET = "excluded_target"
    EXCLUDED_ANCHOR = "excluded_anchor"
    UNPUBLISHED = "unpublished"
    NOT_FOUND = "not_found"
    NO_ANCHOR = "no_anchor"
    NO_ATTACHABLE_TEXT = "no_attachable_text"
    PERSIST_FAILED = "persist_failed"


# ---------------------------------------------------------------------------
# Content side
# ---------------------------------------------------------------------------


@dataclass
class Node:
    """A content document as seen by the engine."""

    node_id: int
    title: str
    body: str = ""
    status: str = PUBLISHED_STATE
    permalink: str = ""
    categories: List[str] = field(default_factory=list)

    @property
    def is_published(self) -> bool:
        return self.status == PUBLISHED_STATE

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Node:
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


# ---------------------------------------------------------------------------
# Silo side
# ---------------------------------------------------------------------------


@dataclass
class SiloMember:
    node_id: int
    position: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SiloMember:
        return cls(node_id=int(data["node_id"]), position=int(data.get("position", 0)))


@dataclass
class PatternRule:
    """One ``{source, target}`` entry of a custom linking pattern.

    Each side is a node id or the literal ``"hub"`` token.
    """

    source: Union[int, str]
    target: Union[int, str]

    @staticmethod
    def _normalize_side(value: Any) -> Union[int, str]:
        if isinstance(value, bool):
            return str(value)
        if isinstance(value, int):
            return value
        text = str(value).strip()
        if text.lower() in HUB_TOKEN_ALIASES:
            return HUB_TOKEN
        if text.isdigit():
            return int(text)
        return text

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> PatternRule:
        source = data.get("source", data.get("from", ""))
        target = data.get("target", data.get("to", ""))
        return cls(source=cls._normalize_side(source), target=cls._normalize_side(target))

    def to_dict(self) -> Dict[str, Any]:
        return {"source": self.source, "target": self.target}


@dataclass
class LinkSettings:
    """Normalized per-silo settings.

    ``explicit`` holds the setting names the raw bundle actually provided,
    which the custom mode uses to decide whether hub guarantees apply.
    """

    linking_mode: LinkingMode = LinkingMode.LINEAR
    supports_to_hub: bool = True
    hub_to_supports: bool = False
    max_hub_links: int = DEFAULT_MAX_HUB_LINKS
    max_contextual_links: int = DEFAULT_MAX_CONTEXTUAL_LINKS
    max_cross_links_per_post: int = DEFAULT_MAX_CROSS_LINKS
    custom_pattern: List[PatternRule] = field(default_factory=list)
    placement_type: PlacementType = PlacementType.NATURAL
    use_suggester: bool = True
    auto_link: bool = False
    max_anchor_usage: int = DEFAULT_MAX_ANCHOR_USAGE
    explicit: Set[str] = field(default_factory=set, repr=False)

    @classmethod
    def from_raw(
        cls,
        raw: Union[Dict[str, Any], str, None],
        linking_mode: Union[str, LinkingMode, None] = None,
    ) -> LinkSettings:
        """Build settings from a raw dict or JSON string."""
        if isinstance(raw, str):
            try:
                raw = json.loads(raw) if raw.strip() else {}
            except json.JSONDecodeError:
                logger.warning("Silo settings are not valid JSON, using defaults")
                raw = {}
        data: Dict[str, Any] = {}
        for key, value in (raw or {}).items():
            data[_SETTING_ALIASES.get(key, key)] = value

        mode = linking_mode if linking_mode is not None else data.get("linking_mode")

        pattern_raw = data.get("custom_pattern") or []
        if isinstance(pattern_raw, str):
            try:
                pattern_raw = json.loads(pattern_raw)
            except json.JSONDecodeError:
                logger.warning("custom_pattern is not valid JSON, ignoring it")
                pattern_raw = []
        rules = [PatternRule.from_dict(r) for r in pattern_raw if isinstance(r, dict)]

        return cls(
            linking_mode=LinkingMode.from_string(mode),
            supports_to_hub=_as_bool(data.get("supports_to_hub"), True),
            hub_to_supports=_as_bool(data.get("hub_to_supports"), False),
            max_hub_links=_as_int(data.get("max_hub_links"), DEFAULT_MAX_HUB_LINKS),
            max_contextual_links=_as_int(
                data.get("max_contextual_links"), DEFAULT_MAX_CONTEXTUAL_LINKS
            ),
            max_cross_links_per_post=_as_int(
                data.get("max_cross_links_per_post"), DEFAULT_MAX_CROSS_LINKS
            ),
            custom_pattern=rules,
            placement_type=PlacementType.from_string(data.get("placement_type")),
            use_suggester=_as_bool(data.get("use_suggester"), True),
            auto_link=_as_bool(data.get("auto_link", data.get("auto_update")), False),
            max_anchor_usage=_as_int(data.get("max_anchor_usage"), DEFAULT_MAX_ANCHOR_USAGE),
            explicit={k for k, v in data.items() if v is not None},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "linking_mode": self.linking_mode.value,
            "supports_to_hub": self.supports_to_hub,
            "hub_to_supports": self.hub_to_supports,
            "max_hub_links": self.max_hub_links,
            "max_contextual_links": self.max_contextual_links,
            "max_cross_links_per_post": self.max_cross_links_per_post,
            "custom_pattern": [r.to_dict() for r in self.custom_pattern],
            "placement_type": self.placement_type.value,
            "use_suggester": self.use_suggester,
            "auto_link": self.auto_link,
            "max_anchor_usage": self.max_anchor_usage,
        }


@dataclass
class Silo:
    """A named collection of nodes with an optional hub."""

    silo_id: int
    name: str
    hub_id: Optional[int] = None
    members: List[SiloMember] = field(default_factory=list)
    linking_mode: LinkingMode = LinkingMode.LINEAR
    settings: Dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=_now_iso)

    @property
    def has_hub(self) -> bool:
        return self.hub_id is not None

    @property
    def support_ids(self) -> List[int]:
        """Member ids excluding the hub, ordered by stored position."""
        ordered = sorted(self.members, key=lambda m: m.position)
        seen: Set[int] = set()
        result: List[int] = []
        for member in ordered:
            if member.node_id == self.hub_id or member.node_id in seen:
                continue
            seen.add(member.node_id)
            result.append(member.node_id)
        return result

    @property
    def all_node_ids(self) -> List[int]:
        ids = list(self.support_ids)
        if self.hub_id is not None:
            ids.insert(0, self.hub_id)
        return ids

    def contains(self, node_id: int) -> bool:
        return node_id == self.hub_id or any(m.node_id == node_id for m in self.members)

    def link_settings(self) -> LinkSettings:
        return LinkSettings.from_raw(self.settings, self.linking_mode)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "silo_id": self.silo_id,
            "name": self.name,
            "hub_id": self.hub_id,
            "members": [m.to_dict() for m in self.members],
            "linking_mode": self.linking_mode.value,
            "settings": self.settings,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Silo:
        hub = data.get("hub_id")
        return cls(
            silo_id=int(data["silo_id"]),
            name=data.get("name", ""),
            hub_id=int(hub) if hub not in (None, "", 0) else None,
            members=[SiloMember.from_dict(m) for m in data.get("members", [])],
            linking_mode=LinkingMode.from_string(data.get("linking_mode")),
            settings=data.get("settings") or {},
            created_at=data.get("created_at") or _now_iso(),
        )


@dataclass
class LinkRecord:
    """A generated link, persisted by the silo store."""

    link_id: str
    silo_id: int
    source_id: int
    target_id: int
    anchor_text: str
    insertion_offset: int = 0
    placement_type: str = PlacementType.NATURAL.value
    status: str = LinkStatus.ACTIVE.value
    position: int = 0
    suggested: bool = False
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = ""

    @property
    def is_active(self) -> bool:
        return self.status == LinkStatus.ACTIVE.value

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> LinkRecord:
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


# ---------------------------------------------------------------------------
# Run-scoped objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EdgeSpec:
    """A planned edge; ``rule`` names the topology rule that emitted it."""

    source_id: int
    target_id: int
    rule: str = ""


@dataclass
class SkipRecord:
    source_id: int
    target_id: int
    reason: SkipReason
    detail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_id": self.source_id,
            "target_id": self.target_id,
            "reason": self.reason.value,
            "detail": self.detail,
        }


@dataclass
class RunContext:
    """State shared by every edge of one ``generate()`` or ``preview()`` call."""

    silo: Silo
    settings: LinkSettings
    dry_run: bool = False
    used_anchors: Set[str] = field(default_factory=set)
    created: List[LinkRecord] = field(default_factory=list)
    skipped: List[SkipRecord] = field(default_factory=list)
    started_at: str = field(default_factory=_now_iso)

    def is_anchor_used(self, text: str) -> bool:
        return text.strip().lower() in self.used_anchors

    def mark_anchor_used(self, text: str) -> None:
        self.used_anchors.add(text.strip().lower())

    def release_anchor(self, text: str) -> None:
        self.used_anchors.discard(text.strip().lower())

    def record_skip(
        self, source_id: int, target_id: int, reason: SkipReason, detail: str = ""
    ) -> SkipRecord:
        record = SkipRecord(source_id, target_id, reason, detail)
        self.skipped.append(record)
        return record


@dataclass
class PreviewEntry:
    target_id: int
    target_title: str
    anchor_text: str
    anchor_variations: List[str] = field(default_factory=list)
    insertion_offset: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
