"""Shared fixtures: fake collaborators, a temporary store and the machines."""
from typing import Dict, List, Optional

import httpx
import pytest
import pytest_asyncio

from thought_server.config import ServerConfig, Settings, build_config
from thought_server.core import (
    DebugControl,
    DraftRefinementMachine,
    Integrator,
    Scorer,
    SessionStore,
    ThoughtChainMachine,
)
from thought_server.main import create_app

TECHNICAL_TEXT = (
    "We implement the caching system with a database index. "
    "The algorithm keeps performance stable under heavy load."
)
SECOND_TEXT = (
    "The database index is rebuilt nightly. "
    "The caching system then serves reads with predictable latency."
)
SHORT_TEXT = "Too short to count."


class FakeEmbedder:
    """Returns fixed vectors per text; unknown texts get ``default``."""

    def __init__(self, vectors: Optional[Dict[str, List[float]]] = None, default=None):
        self.vectors = vectors or {}
        self.default = default
        self.calls = 0

    async def embed(self, text):
        self.calls += 1
        return self.vectors.get(text, self.default)

    async def embed_many(self, texts):
        self.calls += 1
        vectors = [self.vectors.get(text, self.default) for text in texts]
        if any(vector is None for vector in vectors):
            return None
        return vectors


class FailingEmbedder:
    async def embed(self, text):
        raise RuntimeError("embedding backend down")

    async def embed_many(self, texts):
        raise RuntimeError("embedding backend down")


class FakeCoherence:
    def __init__(self, value: float = 0.8):
        self.value = value

    async def check_coherence(self, text):
        return self.value


@pytest.fixture
def config() -> ServerConfig:
    return ServerConfig()


@pytest.fixture
def scorer() -> Scorer:
    return Scorer(FakeEmbedder(), FakeCoherence(), memory_probe=lambda: 0)


@pytest.fixture
def debug(config) -> DebugControl:
    return DebugControl(config.debug)


@pytest_asyncio.fixture
async def store(tmp_path):
    store = SessionStore(str(tmp_path / "drafts.sqlite"))
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def drafts(store, scorer, config, debug) -> DraftRefinementMachine:
    return DraftRefinementMachine(store, scorer, config.draft, config.enhancement, debug)


@pytest.fixture
def thoughts(scorer, config, debug) -> ThoughtChainMachine:
    return ThoughtChainMachine(scorer, config.thought, config.enhancement, debug)


@pytest.fixture
def integrator(thoughts, drafts, scorer, config, debug) -> Integrator:
    return Integrator(thoughts, drafts, scorer, config, debug)


@pytest_asyncio.fixture
async def client(tmp_path):
    """HTTP client bound to an app with fake collaborators."""
    app_config = build_config(
        ServerConfig(),
        overrides={"storage": {"path": str(tmp_path / "api.sqlite")}},
    )
    app = create_app(
        settings=Settings(config_file=str(tmp_path / "missing.yaml")),
        config=app_config,
        embedder=FakeEmbedder(),
        coherence=FakeCoherence(),
    )
    async with app.router.lifespan_context(app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
            yield http
