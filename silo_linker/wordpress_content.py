"""
WordPress content store.

Reads and writes post bodies through the WordPress REST API (v2) with
application-password auth. The engine is synchronous, so every public method
wraps an aiohttp coroutine with ``_run_sync`` and closes the session when
the call returns. Transient failures (429 and 5xx, network errors) are
retried with exponential backoff.

Usage:
    from silo_linker.wordpress_content import SiteConfig, WordPressContentStore

    store = WordPressContentStore(SiteConfig(domain="example.com", wp_user="editor",
                                             app_password="xxxx xxxx"))
    node = store.get_node(1234)
    store.set_body(1234, node.body)
"""

from __future__ import annotations

import asyncio
import base64
import html
import json
import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional, Tuple

import aiohttp

from silo_linker.errors import NotFoundError, PersistError
from silo_linker.models import Node

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger("wordpress_content")
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

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MAX_RETRIES = 3
RETRY_BASE_DELAY = 1.0  # seconds
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}
WP_MAX_PER_PAGE = 100
CONTENT_TYPES = ("posts", "pages")


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class WordPressError(PersistError):
    """Base exception for WordPress API errors."""

    def __init__(self, message: str, status_code: int = 0, response_body: str = ""):
        super().__init__(message, status_code=status_code)
        self.status_code = status_code
        self.response_body = response_body


class AuthenticationError(WordPressError):
    """Raised on 401/403 responses."""
    pass


class ResourceNotFoundError(WordPressError):
    """Raised on 404 responses."""
    pass


class RateLimitError(WordPressError):
    """Raised on 429 responses after all retries exhausted."""
    pass


class SiteNotConfiguredError(WordPressError):
    """Raised when the site lacks credentials."""
    pass


# ---------------------------------------------------------------------------
# SiteConfig
# ---------------------------------------------------------------------------


@dataclass
class SiteConfig:
    """Connection settings for one WordPress site."""

    domain: str
    site_id: str = ""
    wp_user: str = ""
    app_password: str = ""

    @property
    def api_url(self) -> str:
        """WP REST API v2 base URL."""
        return f"https://{self.domain}/wp-json/wp/v2"

    @property
    def auth_header(self) -> str:
        """Base64-encoded Basic auth header value."""
        if not self.wp_user or not self.app_password:
            return ""
        credentials = f"{self.wp_user}:{self.app_password}"
        encoded = base64.b64encode(credentials.encode("utf-8")).decode("utf-8")
        return f"Basic {encoded}"

    @property
    def is_configured(self) -> bool:
        return bool(self.domain and self.wp_user and self.app_password)

    def __repr__(self) -> str:
        configured = "configured" if self.is_configured else "no-creds"
        return f"SiteConfig({self.site_id or self.domain!r}, {configured})"


# ---------------------------------------------------------------------------
# Async helpers
# ---------------------------------------------------------------------------


def _run_sync(coro):
    """Run an async coroutine synchronously."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None

    if loop and loop.is_running():
        # Already inside a running loop: run on a fresh loop in a worker thread.
        import concurrent.futures

        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            future = pool.submit(asyncio.run, coro)
            return future.result(timeout=120)
    return asyncio.run(coro)


def _rendered(field: Any) -> str:
    """Prefer the raw value of a WP ``{raw, rendered}`` field."""
    if isinstance(field, dict):
        if field.get("raw") is not None:
            return field["raw"]
        return html.unescape(field.get("rendered", "") or "")
    return str(field or "")


# ---------------------------------------------------------------------------
# WordPressContentStore
# ---------------------------------------------------------------------------


class WordPressContentStore:
    """Content store backed by a WordPress site."""

    def __init__(self, config: SiteConfig, timeout: int = 30):
        self.config = config
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None
        self._nodes: Dict[int, Node] = {}
        self._types: Dict[int, str] = {}
        self._category_names: Optional[Dict[int, str]] = None
        self._listeners: List[Callable[[int], None]] = []

    # -- Session management -------------------------------------------------

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            headers = {
                "User-Agent": "SiloLinker/1.0",
                "Accept": "application/json",
            }
            if self.config.auth_header:
                headers["Authorization"] = self.config.auth_header
            self._session = aiohttp.ClientSession(
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
        return self._session

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _call(self, coro):
        """Run ``coro`` to completion and close the session opened for it."""

        async def _runner():
            try:
                return await coro
            finally:
                await self.close()

        return _run_sync(_runner())

    # -- Core HTTP ----------------------------------------------------------

    async def _request(
        self,
        method: str,
        endpoint: str,
        *,
        json_data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Tuple[int, Any, Dict[str, str]]:
        """HTTP request against the v2 API with retry on transient errors."""
        if not self.config.is_configured:
            raise SiteNotConfiguredError(
                f"Site {self.config.domain!r} has no credentials configured"
            )

        url = f"{self.config.api_url}/{endpoint}"
        session = await self._get_session()
        last_error: Optional[Exception] = None

        for attempt in range(MAX_RETRIES + 1):
            try:
                logger.debug("API %s %s (attempt %d/%d)", method, url, attempt + 1, MAX_RETRIES + 1)
                kwargs: Dict[str, Any] = {}
                if json_data is not None:
                    kwargs["json"] = json_data
                if params is not None:
                    kwargs["params"] = {k: v for k, v in params.items() if v is not None}

                async with session.request(method, url, **kwargs) as resp:
                    status = resp.status
                    resp_headers = dict(resp.headers)
                    try:
                        body = await resp.json(content_type=None)
                    except (json.JSONDecodeError, ValueError):
                        body = await resp.text()

                    if status in (401, 403):
                        raise AuthenticationError(
                            f"Authentication failed for {self.config.domain}: HTTP {status}",
                            status_code=status,
                            response_body=str(body),
                        )
                    if status == 404:
                        raise ResourceNotFoundError(
                            f"Resource not found: {url}", status_code=404, response_body=str(body)
                        )
                    if status in RETRY_STATUS_CODES and attempt < MAX_RETRIES:
                        delay = RETRY_BASE_DELAY * (2 ** attempt)
                        retry_after = resp_headers.get("Retry-After")
                        if retry_after:
                            try:
                                delay = max(delay, float(retry_after))
                            except ValueError:
                                pass
                        logger.warning("Retryable error %d from %s, retrying in %.1fs", status, url, delay)
                        await asyncio.sleep(delay)
                        continue
                    if status == 429:
                        raise RateLimitError(
                            f"Rate limited by {self.config.domain} after {MAX_RETRIES} retries",
                            status_code=429,
                            response_body=str(body),
                        )
                    if status >= 400:
                        message = body.get("message", str(body)) if isinstance(body, dict) else body
                        raise WordPressError(
                            f"HTTP {status} from {self.config.domain}: {message}",
                            status_code=status,
                            response_body=str(body),
                        )
                    return status, body, resp_headers

            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                last_error = exc
                if attempt < MAX_RETRIES:
                    delay = RETRY_BASE_DELAY * (2 ** attempt)
                    logger.warning(
                        "Network error on %s (%s), retrying in %.1fs", url, type(exc).__name__, delay
                    )
                    await asyncio.sleep(delay)
                else:
                    raise WordPressError(
                        f"Network error after {MAX_RETRIES} retries for {self.config.domain}: {exc}"
                    ) from exc

        raise WordPressError(f"Request failed after {MAX_RETRIES} retries: {last_error}")

    # -- Async API ----------------------------------------------------------

    async def fetch_category_names(self, force_refresh: bool = False) -> Dict[int, str]:
        """Map of category id to name, fetched once per store."""
        if self._category_names is not None and not force_refresh:
            return self._category_names
        names: Dict[int, str] = {}
        page = 1
        while True:
            _, batch, _ = await self._request(
                "GET", "categories", params={"per_page": WP_MAX_PER_PAGE, "page": page}
            )
            if not isinstance(batch, list) or not batch:
                break
            for entry in batch:
                names[int(entry["id"])] = html.unescape(entry.get("name", ""))
            if len(batch) < WP_MAX_PER_PAGE:
                break
            page += 1
        self._category_names = names
        return names

    async def fetch_node(self, node_id: int) -> Optional[Node]:
        """Fetch a post (or page) in edit context; None when neither exists."""
        types = [self._types[node_id]] if node_id in self._types else list(CONTENT_TYPES)
        for content_type in types:
            try:
                _, data, _ = await self._request(
                    "GET", f"{content_type}/{node_id}", params={"context": "edit"}
                )
            except ResourceNotFoundError:
                continue
            self._types[node_id] = content_type

            categories: List[str] = []
            category_ids = data.get("categories") or []
            if category_ids:
                names = await self.fetch_category_names()
                categories = [names[c] for c in category_ids if c in names]

            node = Node(
                node_id=node_id,
                title=_rendered(data.get("title")),
                body=_rendered(data.get("content")),
                status=data.get("status", ""),
                permalink=data.get("link", ""),
                categories=categories,
            )
            self._nodes[node_id] = node
            logger.debug("Fetched %s %d from %s", content_type[:-1], node_id, self.config.domain)
            return node
        return None

    async def update_body(self, node_id: int, body: str) -> None:
        content_type = self._types.get(node_id)
        if content_type is None:
            if await self.fetch_node(node_id) is None:
                raise NotFoundError(f"Node {node_id} not found on {self.config.domain}", node_id=node_id)
            content_type = self._types[node_id]
        await self._request("POST", f"{content_type}/{node_id}", json_data={"content": body})
        logger.info("Updated body of %s %d on %s", content_type[:-1], node_id, self.config.domain)

    # -- Content store interface --------------------------------------------

    def add_save_listener(self, callback: Callable[[int], None]) -> None:
        self._listeners.append(callback)

    def _cached(self, node_id: int) -> Node:
        node = self._nodes.get(node_id)
        if node is None:
            node = self._call(self.fetch_node(node_id))
        if node is None:
            raise NotFoundError(f"Node {node_id} not found on {self.config.domain}", node_id=node_id)
        return node

    def get_node(self, node_id: int, refresh: bool = False) -> Optional[Node]:
        if refresh or node_id not in self._nodes:
            node = self._call(self.fetch_node(node_id))
        else:
            node = self._nodes[node_id]
        return replace(node, categories=list(node.categories)) if node else None

    def get_body(self, node_id: int) -> str:
        return self._cached(node_id).body

    def set_body(self, node_id: int, body: str) -> None:
        self._call(self.update_body(node_id, body))
        if node_id in self._nodes:
            self._nodes[node_id] = replace(self._nodes[node_id], body=body)
        for callback in self._listeners:
            callback(node_id)

    def get_permalink(self, node_id: int) -> str:
        return self._cached(node_id).permalink

    def get_publish_state(self, node_id: int) -> str:
        return self._cached(node_id).status

    def get_categories(self, node_id: int) -> List[str]:
        return list(self._cached(node_id).categories)

    def __repr__(self) -> str:
        return f"WordPressContentStore({self.config!r}, cached={len(self._nodes)})"
