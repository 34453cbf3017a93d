from __future__ import annotations

import asyncio
import time

import httpx
import numpy as np

from strata.config import EmbeddingConfig, RetrievalConfig
from strata.embeddings.gateway import EmbeddingGateway
from strata.retrieval import LayeredRetriever, build_memory_context, cosine_similarity, find_top_k
from strata.storage.sqlite_store import SQLiteStore
from strata.types import Chunk, Layer, RetrievalResult


class _TableEmbedder:
    """Returns fixed vectors per text; unknown text gets ``default``."""

    supports_images = False
    max_batch = 10

    def __init__(self, model: str, table: dict[str, list[float]], default=None,
                 delay: float = 0.0, fail: bool = False) -> None:
        self.model = model
        self.table = table
        self.default = default or [0.0, 0.0]
        self.delay = delay
        self.fail = fail
        self.calls: list[list[str]] = []

    async def embed(self, texts):  # noqa: ANN001
        self.calls.append(list(texts))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise httpx.ConnectError("provider unreachable")
        return np.array([self.table.get(t, self.default) for t in texts], dtype=np.float32)

    async def close(self) -> None:
        return None


def _setup(tmp_path, backends: dict[str, _TableEmbedder]):
    store = SQLiteStore(tmp_path / "strata.db")
    gateway = EmbeddingGateway(
        EmbeddingConfig(text_model="A", non_text_model=""),
        factory=lambda model: backends[model],
    )
    retriever = LayeredRetriever(store, gateway, RetrievalConfig())
    return store, retriever


def _put(store: SQLiteStore, content: str, vec, model: str, layer: Layer = Layer.GENERAL) -> Chunk:
    c = Chunk(content=content, layer=layer, target_model=model)
    store.insert_chunk(c)
    store.update_embedding(c.id, np.asarray(vec, dtype=np.float32), model)
    return c


def test_cosine_similarity_properties():
    a = [0.3, -1.2, 2.5]
    b = [1.0, 0.4, -0.7]
    assert cosine_similarity(a, b) == cosine_similarity(b, a)
    assert -1.0 <= cosine_similarity(a, b) <= 1.0
    assert abs(cosine_similarity(a, a) - 1.0) < 1e-9
    assert abs(cosine_similarity(a, [-x for x in a]) + 1.0) < 1e-9
    assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0]) == 0.0


def test_find_top_k_orders_and_skips_zero_norm_rows():
    matrix = np.array([[0.0, 1.0], [0.0, 0.0], [1.0, 0.0], [1.0, 1.0]], dtype=np.float32)
    hits = find_top_k([1.0, 0.0], matrix, 3)

    assert [i for i, _ in hits] == [2, 3, 0]
    assert abs(hits[0][1] - 1.0) < 1e-6
    assert abs(hits[2][1]) < 1e-6
    assert find_top_k([1.0, 0.0], matrix, 0) == []
    assert find_top_k([0.0, 0.0], matrix, 3) == []


def test_search_scores_orthogonal_chunks(tmp_path):
    async def _run() -> None:
        backend = _TableEmbedder("A", {"query": [1.0, 0.0]})
        store, retriever = _setup(tmp_path, {"A": backend})
        try:
            c1 = _put(store, "chunk one", [1.0, 0.0], "A")
            c2 = _put(store, "chunk two", [0.0, 1.0], "A")

            results = await retriever.search("query", top_k=2, layer_weights={"general": 1.0})

            assert [r.id for r in results] == [c1.id, c2.id]
            assert abs(results[0].score - 1.0) < 1e-6
            assert abs(results[1].score) < 1e-6
            assert results[0].embedding_model == "A"
        finally:
            store.close()

    asyncio.run(_run())


def test_search_applies_layer_weights_and_top_k(tmp_path):
    async def _run() -> None:
        backend = _TableEmbedder("A", {"query": [1.0, 0.0]})
        store, retriever = _setup(tmp_path, {"A": backend})
        try:
            general = _put(store, "general fact", [1.0, 0.0], "A", Layer.GENERAL)
            profile = _put(store, "profile fact", [1.0, 0.0], "A", Layer.RATIONAL)
            for i in range(5):
                _put(store, f"filler {i}", [0.6, 0.8], "A", Layer.GENERAL)

            results = await retriever.search("query", top_k=10)

            assert results[0].id == profile.id
            assert abs(results[0].score - 1.2) < 1e-6
            assert results[1].id == general.id
            assert abs(results[1].score - 0.9) < 1e-6
            # general contributes at most its per-layer k
            assert sum(1 for r in results if r.layer == Layer.GENERAL) == 3
            assert [r.score for r in results] == sorted((r.score for r in results), reverse=True)

            top1 = await retriever.search("query", top_k=1)
            assert [r.id for r in top1] == [profile.id]
        finally:
            store.close()

    asyncio.run(_run())


def test_search_never_returns_pending_chunks(tmp_path):
    async def _run() -> None:
        backend = _TableEmbedder("A", {"query": [1.0, 0.0]})
        store, retriever = _setup(tmp_path, {"A": backend})
        try:
            embedded = _put(store, "embedded chunk", [0.8, 0.6], "A")
            store.insert_chunk(Chunk(content="still pending", layer=Layer.GENERAL, target_model="A"))

            results = await retriever.search("query", top_k=5)
            assert [r.id for r in results] == [embedded.id]
        finally:
            store.close()

    asyncio.run(_run())


def test_search_compares_only_within_a_model(tmp_path):
    async def _run() -> None:
        a = _TableEmbedder("A", {"query": [1.0, 0.0]})
        b = _TableEmbedder("B", {"query": [0.0, 1.0, 0.0]})
        store, retriever = _setup(tmp_path, {"A": a, "B": b})
        try:
            in_a = _put(store, "model a chunk", [1.0, 0.0], "A", Layer.GENERAL)
            in_a_hist = _put(store, "model a history", [1.0, 0.0], "A", Layer.HISTORICAL)
            in_b = _put(store, "model b chunk", [0.0, 1.0, 0.0], "B", Layer.GENERAL)

            results = await retriever.search("query", top_k=5)

            assert {r.id for r in results} == {in_a.id, in_a_hist.id, in_b.id}
            # one query embedding per model, shared across layers
            assert a.calls == [["query"]]
            assert b.calls == [["query"]]
        finally:
            store.close()

    asyncio.run(_run())


def test_search_skips_model_whose_query_embedding_fails(tmp_path):
    async def _run() -> None:
        a = _TableEmbedder("A", {"query": [1.0, 0.0]})
        b = _TableEmbedder("B", {}, fail=True)
        store, retriever = _setup(tmp_path, {"A": a, "B": b})
        try:
            in_a = _put(store, "model a chunk", [1.0, 0.0], "A")
            _put(store, "model b chunk", [0.0, 1.0, 0.0], "B")

            results = await retriever.search("query", top_k=5)
            assert [r.id for r in results] == [in_a.id]
        finally:
            store.close()

    asyncio.run(_run())


def test_search_returns_partial_results_on_timeout(tmp_path):
    async def _run() -> None:
        a = _TableEmbedder("A", {"query": [1.0, 0.0]})
        slow = _TableEmbedder("slow", {"query": [1.0, 0.0]}, delay=5.0)
        store, retriever = _setup(tmp_path, {"A": a, "slow": slow})
        try:
            fast = _put(store, "general chunk", [1.0, 0.0], "A", Layer.GENERAL)
            _put(store, "historical chunk", [1.0, 0.0], "slow", Layer.HISTORICAL)

            started = time.monotonic()
            results = await retriever.search("query", top_k=5, timeout=0.2)
            elapsed = time.monotonic() - started

            assert [r.id for r in results] == [fast.id]
            assert elapsed < 2.0
        finally:
            store.close()

    asyncio.run(_run())


def test_search_empty_store_and_blank_query(tmp_path):
    async def _run() -> None:
        backend = _TableEmbedder("A", {"query": [1.0, 0.0]})
        store, retriever = _setup(tmp_path, {"A": backend})
        try:
            assert await retriever.search("query", top_k=5) == []
            _put(store, "some chunk", [1.0, 0.0], "A")
            assert await retriever.search("   ", top_k=5) == []
            assert await retriever.search("query", top_k=0) == []
            assert backend.calls == []
        finally:
            store.close()

    asyncio.run(_run())


def test_build_memory_context_groups_by_layer():
    results = [
        RetrievalResult(id="1", content="kb fact", score=0.9, layer=Layer.GENERAL),
        RetrievalResult(id="2", content="likes tea", score=1.1, layer=Layer.RATIONAL),
        RetrievalResult(id="3", content="felt calm", score=1.0, layer=Layer.EMOTIONAL),
        RetrievalResult(id="4", content="kb other", score=0.5, layer=Layer.GENERAL),
    ]
    context = build_memory_context(results)

    assert context == (
        "## User profile\n  [1] likes tea\n\n"
        "## Emotional memory\n  [1] felt calm\n\n"
        "## Knowledge base\n  [1] kb fact\n  [2] kb other"
    )
    assert build_memory_context([]) == ""
