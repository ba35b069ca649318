"""
Shared fixtures for the Silo Linker test suite.

Provides sample nodes, an in-memory silo store and content store, and a
ready-wired engine so that all tests run WITHOUT any external services.
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from silo_linker.link_engine import LinkGraphBuilder
from silo_linker.models import Node
from silo_linker.store import MemoryContentStore, SiloStore

HUB_ID = 1
A_ID = 2
B_ID = 3
C_ID = 4

TITLES = {
    HUB_ID: "Crystal Healing",
    A_ID: "Tarot Spreads",
    B_ID: "Herbal Remedies",
    C_ID: "Candle Rituals",
}


def make_body(intro: str) -> str:
    """Body that mentions every sample title once, in its own paragraph."""
    return (
        f"<p>{intro}</p>\n"
        "<p>Start with Crystal Healing for the basics of energy work.</p>\n"
        "<p>Then try Tarot Spreads when you want guidance at home.</p>\n"
        "<p>Many readers enjoy Herbal Remedies for everyday balance.</p>\n"
        "<p>Finish the week with Candle Rituals at night.</p>"
    )


def make_node(node_id: int, title: str = "", body: str = None, **kwargs) -> Node:
    title = title or TITLES.get(node_id, f"Post {node_id}")
    if body is None:
        body = make_body(f"This article covers {title.lower()} in depth.")
    return Node(
        node_id=node_id,
        title=title,
        body=body,
        permalink=f"https://witchcraft.test/{title.lower().replace(' ', '-')}/",
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def nodes():
    """Hub plus three supports, all published."""
    return [make_node(node_id) for node_id in (HUB_ID, A_ID, B_ID, C_ID)]


@pytest.fixture
def content_store(nodes):
    return MemoryContentStore(nodes)


@pytest.fixture
def silo_store():
    """In-memory silo store (no data_dir, nothing written to disk)."""
    return SiloStore()


@pytest.fixture
def engine(silo_store, content_store):
    builder = LinkGraphBuilder(silo_store, content_store)
    content_store.add_save_listener(builder.handle_node_saved)
    return builder


@pytest.fixture
def make_silo(silo_store):
    """Factory for silos over the sample nodes."""

    def _make(mode="linear", hub=HUB_ID, members=(A_ID, B_ID, C_ID), **settings):
        return silo_store.create_silo("Witchcraft Basics", hub, list(members), mode, settings)

    return _make


# ---------------------------------------------------------------------------
# Anthropic fixtures
# ---------------------------------------------------------------------------

def make_message(text: str):
    """Object shaped like an Anthropic Messages API response."""
    return SimpleNamespace(content=[SimpleNamespace(text=text)])


@pytest.fixture
def mock_anthropic_client():
    client = MagicMock()
    client.messages.create.return_value = make_message('["moon water rituals", "lunar water"]')
    return client
