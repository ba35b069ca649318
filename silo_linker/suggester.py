"""
Anchor text suggestions from Claude.

Wraps the Anthropic Messages API behind the two calls the engine needs:
``suggest_anchors`` (up to three candidate phrases for a source/target pair)
and ``rank_relevant`` (ordering a candidate pool by relevance to a hub).
Results are cached with a freshness window, and a fixed hourly request
ceiling keeps usage bounded. Every failure surfaces as ``SuggesterError`` so
callers can fall back to heuristics.

Usage:
    from silo_linker.suggester import ClaudeSuggester

    suggester = ClaudeSuggester(max_requests_per_hour=100)
    anchors = suggester.suggest_anchors(source_node, target_node)
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import re
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

import anthropic

from silo_linker.errors import RateLimitExceeded, SuggesterError
from silo_linker.models import Node
from silo_linker.text_utils import MAX_ANCHOR_CHARS, strip_tags

logger = logging.getLogger("suggester")

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MODEL_HAIKU = "claude-haiku-4-5-20251001"

DEFAULT_CACHE_TTL = 3600  # seconds
DEFAULT_MAX_REQUESTS_PER_HOUR = 100
MAX_SUGGESTIONS = 3
MAX_TOKENS_ANCHORS = 200
MAX_TOKENS_RANKING = 600
EXCERPT_CHARS = 600

ANCHOR_SYSTEM_PROMPT = (
    "You are an SEO editor choosing internal link anchor text. "
    "Anchors must be short natural phrases (2 to 6 words) that describe the "
    "target article and could plausibly appear in the source article. "
    "Respond with a JSON array of strings and nothing else."
)

RANKING_SYSTEM_PROMPT = (
    "You are an SEO strategist building topical content silos. "
    "Given a pillar article and candidate articles, pick the candidates that "
    "best support the pillar topic. Respond with a JSON array of candidate "
    "ids ordered from most to least relevant and nothing else."
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


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


def _excerpt(node: Node, limit: int = EXCERPT_CHARS) -> str:
    text = strip_tags(node.body or "")
    return text[:limit]


def parse_anchor_response(text: str, limit: int = MAX_SUGGESTIONS) -> List[str]:
    """Extract anchor phrases from a model response.

    Accepts a JSON array, falls back to quoted strings, then to one phrase per
    line. Entries that are empty or longer than 100 characters are dropped.
    """
    candidates: List[str] = []
    raw = (text or "").strip()
    match = re.search(r"\[.*\]", raw, re.DOTALL)
    if match:
        try:
            parsed = json.loads(match.group(0))
            if isinstance(parsed, list):
                candidates = [str(item) for item in parsed if isinstance(item, (str, int, float))]
        except json.JSONDecodeError:
            candidates = []
    if not candidates:
        candidates = re.findall(r"\"([^\"\n]+)\"", raw)
    if not candidates:
        candidates = [
            re.sub(r"^\s*(?:[-*•]|\d+[.)])\s*", "", line)
            for line in raw.splitlines()
        ]

    result: List[str] = []
    for candidate in candidates:
        cleaned = candidate.strip().strip("\"'")
        if cleaned and len(cleaned) <= MAX_ANCHOR_CHARS and cleaned not in result:
            result.append(cleaned)
        if len(result) >= limit:
            break
    return result


def parse_ranking_response(text: str, allowed_ids: Sequence[int]) -> List[int]:
    """Extract an ordered list of node ids limited to ``allowed_ids``."""
    allowed = set(allowed_ids)
    raw = (text or "").strip()
    ids: List[int] = []
    match = re.search(r"\[.*\]", raw, re.DOTALL)
    items: List[Any] = []
    if match:
        try:
            parsed = json.loads(match.group(0))
            if isinstance(parsed, list):
                items = parsed
        except json.JSONDecodeError:
            items = []
    if not items:
        items = re.findall(r"\d+", raw)

    for item in items:
        if isinstance(item, dict):
            item = item.get("node_id", item.get("post_id", item.get("id")))
        try:
            node_id = int(item)
        except (TypeError, ValueError):
            continue
        if node_id in allowed and node_id not in ids:
            ids.append(node_id)
    return ids


# ---------------------------------------------------------------------------
# Cache and request budget
# ---------------------------------------------------------------------------


class SuggestionCache:
    """Key/value cache with a freshness window, optionally persisted to JSON."""

    def __init__(
        self,
        ttl: int = DEFAULT_CACHE_TTL,
        path: Optional[Path] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl = ttl
        self.path = path
        self._clock = clock
        self._entries: Dict[str, Dict[str, Any]] = {}
        if path is not None:
            self._entries = _load_json(path, default={})

    @staticmethod
    def make_key(*parts: Any) -> str:
        joined = "_".join(str(p) for p in parts)
        return hashlib.md5(joined.encode("utf-8")).hexdigest()

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if not entry:
            return None
        if entry.get("expires_at", 0) <= self._clock():
            self._entries.pop(key, None)
            return None
        return entry.get("value")

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = {"value": value, "expires_at": self._clock() + self.ttl}
        self._persist()

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [k for k, v in self._entries.items() if v.get("expires_at", 0) <= now]
        for key in expired:
            del self._entries[key]
        if expired:
            self._persist()
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)

    def _persist(self) -> None:
        if self.path is not None:
            _save_json(self.path, self._entries)


class HourlyRequestBudget:
    """Fixed one-hour window request counter."""

    def __init__(
        self,
        limit: int = DEFAULT_MAX_REQUESTS_PER_HOUR,
        clock: Callable[[], float] = time.time,
    ):
        self.limit = limit
        self._clock = clock
        self._window = ""
        self._count = 0

    def _current_window(self) -> str:
        return time.strftime("%Y-%m-%d-%H", time.gmtime(self._clock()))

    def _roll(self) -> None:
        window = self._current_window()
        if window != self._window:
            self._window = window
            self._count = 0

    @property
    def remaining(self) -> int:
        self._roll()
        return max(self.limit - self._count, 0)

    def acquire(self) -> None:
        """Count one request, or raise ``RateLimitExceeded`` when the window is full."""
        self._roll()
        if self._count >= self.limit:
            raise RateLimitExceeded(
                f"Suggester hourly limit of {self.limit} requests reached",
                limit=self.limit,
                window=self._window,
            )
        self._count += 1


# ---------------------------------------------------------------------------
# ClaudeSuggester
# ---------------------------------------------------------------------------


class ClaudeSuggester:
    """Anchor suggestions and relevance ranking through the Anthropic SDK."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = MODEL_HAIKU,
        cache_ttl: int = DEFAULT_CACHE_TTL,
        max_requests_per_hour: int = DEFAULT_MAX_REQUESTS_PER_HOUR,
        cache_path: Optional[Path] = None,
        client: Any = None,
        clock: Callable[[], float] = time.time,
    ):
        self.api_key = api_key if api_key is not None else os.environ.get("ANTHROPIC_API_KEY", "")
        self.model = model
        self._client = client
        self.cache = SuggestionCache(ttl=cache_ttl, path=cache_path, clock=clock)
        self.budget = HourlyRequestBudget(limit=max_requests_per_hour, clock=clock)

    def _ensure_client(self) -> Any:
        """Lazily initialize the synchronous Anthropic client."""
        if self._client is None:
            if not self.api_key:
                raise SuggesterError(
                    "ANTHROPIC_API_KEY is not set; anchor suggestions are disabled"
                )
            self._client = anthropic.Anthropic(api_key=self.api_key)
        return self._client

    def is_available(self) -> bool:
        return bool(self._client is not None or self.api_key) and self.budget.remaining > 0

    def _complete(self, system_prompt: str, user_prompt: str, max_tokens: int) -> str:
        client = self._ensure_client()
        self.budget.acquire()
        logger.debug(
            "API call: model=%s max_tokens=%d user_len=%d",
            self.model, max_tokens, len(user_prompt),
        )
        start_time = time.monotonic()
        try:
            response = client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                temperature=0.3,
                system=system_prompt,
                messages=[{"role": "user", "content": user_prompt}],
            )
        except anthropic.APIError as exc:
            logger.error("API call failed after %.1fs: %s", time.monotonic() - start_time, exc)
            raise SuggesterError(f"Suggester request failed: {exc}") from exc
        text = response.content[0].text if response.content else ""
        logger.debug("API response: %d chars in %.1fs", len(text), time.monotonic() - start_time)
        return text

    # -- Anchor suggestions -------------------------------------------------

    def suggest_anchors(self, source: Node, target: Node, context: str = "") -> List[str]:
        """Return up to three anchor phrases for a link from ``source`` to ``target``."""
        key = SuggestionCache.make_key("anchor", source.node_id, target.node_id, context)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("Anchor cache hit for %d -> %d", source.node_id, target.node_id)
            return list(cached)

        prompt = (
            f"Source article title: {source.title}\n"
            f"Source article excerpt: {_excerpt(source)}\n\n"
            f"Target article title: {target.title}\n"
            f"Target article excerpt: {_excerpt(target)}\n"
        )
        if context:
            prompt += f"\nAdditional context: {context}\n"
        prompt += (
            f"\nSuggest up to {MAX_SUGGESTIONS} anchor text phrases for a link "
            "from the source article to the target article."
        )

        text = self._complete(ANCHOR_SYSTEM_PROMPT, prompt, MAX_TOKENS_ANCHORS)
        anchors = parse_anchor_response(text)
        if not anchors:
            raise SuggesterError(
                f"Suggester returned no usable anchors for {source.node_id} -> {target.node_id}"
            )
        self.cache.set(key, anchors)
        logger.info(
            "Suggested %d anchors for %d -> %d", len(anchors), source.node_id, target.node_id
        )
        return anchors

    # -- Relevance ranking --------------------------------------------------

    def rank_relevant(self, hub: Node, candidates: Sequence[Node], limit: int) -> List[int]:
        """Order candidate node ids by relevance to ``hub``, best first."""
        if not candidates or limit <= 0:
            return []
        candidate_ids = [c.node_id for c in candidates]
        key = SuggestionCache.make_key("rank", hub.node_id, ",".join(map(str, candidate_ids)), limit)
        cached = self.cache.get(key)
        if cached is not None:
            return list(cached)[:limit]

        lines = [
            f"- id {c.node_id}: {c.title} | {_excerpt(c, 200)}" for c in candidates
        ]
        prompt = (
            f"Pillar article: {hub.title}\n"
            f"Pillar excerpt: {_excerpt(hub)}\n\n"
            "Candidates:\n" + "\n".join(lines) + "\n\n"
            f"Return at most {limit} candidate ids."
        )
        text = self._complete(RANKING_SYSTEM_PROMPT, prompt, MAX_TOKENS_RANKING)
        ranked = parse_ranking_response(text, candidate_ids)[:limit]
        if not ranked:
            raise SuggesterError(f"Suggester returned no ranking for hub {hub.node_id}")
        self.cache.set(key, ranked)
        return ranked

    # -- Diagnostics --------------------------------------------------------

    def test_connection(self) -> Dict[str, Any]:
        """Send a minimal request and report whether the API answered."""
        try:
            text = self._complete(
                "Reply with the single word OK.", "Connection test.", 5
            )
        except SuggesterError as exc:
            return {"success": False, "model": self.model, "error": exc.message}
        return {"success": True, "model": self.model, "response": text.strip()}

    def __repr__(self) -> str:
        return (
            f"ClaudeSuggester(model={self.model!r}, cached={len(self.cache)}, "
            f"remaining={self.budget.remaining})"
        )
