from __future__ import annotations

import asyncio
from datetime import timedelta

import httpx
import numpy as np

from strata.backfill import BackfillProcessor
from strata.config import BackfillConfig, EmbeddingConfig
from strata.embeddings.gateway import EmbeddingGateway
from strata.storage.sqlite_store import SQLiteStore
from strata.types import Chunk, Layer
from strata.utils import utcnow


class _StubEmbedder:
    supports_images = False
    max_batch = 10

    def __init__(self, model: str, fail_calls: set[int] | None = None, delay: float = 0.0) -> None:
        self.model = model
        self.fail_calls = fail_calls or set()
        self.delay = delay
        self.calls: list[list[str]] = []

    async def embed(self, texts):  # noqa: ANN001
        self.calls.append(list(texts))
        if self.delay:
            await asyncio.sleep(self.delay)
        if len(self.calls) in self.fail_calls:
            raise httpx.ConnectError("provider unreachable")
        return np.ones((len(texts), 4), dtype=np.float32)

    async def close(self) -> None:
        return None


def _setup(tmp_path, backends, pending: int, target_model: str | None = "text-m"):
    store = SQLiteStore(tmp_path / "strata.db")
    gateway = EmbeddingGateway(
        EmbeddingConfig(text_model="text-m", non_text_model=""),
        factory=lambda model: backends[model],
    )
    base = utcnow() - timedelta(hours=1)
    store.insert_chunks([
        Chunk(
            content=f"pending chunk {i}",
            layer=Layer.GENERAL,
            target_model=target_model,
            created_at=base + timedelta(seconds=i),
        )
        for i in range(pending)
    ])
    return store, BackfillProcessor(store, gateway, BackfillConfig())


def test_backfill_respects_per_call_cap(tmp_path):
    async def _run() -> None:
        backend = _StubEmbedder("text-m")
        store, backfill = _setup(tmp_path, {"text-m": backend}, pending=70)
        try:
            assert await backfill.run(50) == 50
            assert store.stats()["pending"] == 20
            # oldest first
            assert store.list_unembedded(1)[0].content == "pending chunk 50"
            assert await backfill.run(50) == 20
            assert store.stats()["pending"] == 0
            assert await backfill.run(50) == 0
            assert all(len(call) <= 10 for call in backend.calls)
        finally:
            store.close()

    asyncio.run(_run())


def test_backfill_failed_batch_stays_pending(tmp_path):
    async def _run() -> None:
        backend = _StubEmbedder("text-m", fail_calls={2})
        store, backfill = _setup(tmp_path, {"text-m": backend}, pending=50)
        try:
            assert await backfill.run(50) == 40
            assert store.stats()["pending"] == 10
            assert await backfill.run(50) == 10
            for c in store.list_embedded(Layer.GENERAL):
                assert c.embedding_model == "text-m"
        finally:
            store.close()

    asyncio.run(_run())


def test_backfill_groups_by_target_model(tmp_path):
    async def _run() -> None:
        text = _StubEmbedder("text-m")
        vl = _StubEmbedder("vl-m")
        store, backfill = _setup(tmp_path, {"text-m": text, "vl-m": vl}, pending=3, target_model=None)
        try:
            store.insert_chunk(Chunk(content="scanned page text", layer=Layer.GENERAL, target_model="vl-m"))

            assert await backfill.run(10) == 4

            assert sum(len(c) for c in text.calls) == 3
            assert vl.calls == [["scanned page text"]]
            assert store.stats()["by_model"] == {"text-m": 3, "vl-m": 1}
        finally:
            store.close()

    asyncio.run(_run())


def test_backfill_timeout_keeps_progress(tmp_path):
    async def _run() -> None:
        backend = _StubEmbedder("text-m", delay=0.1)
        store, backfill = _setup(tmp_path, {"text-m": backend}, pending=50)
        try:
            n = await backfill.run(50, timeout=0.25)
            assert 1 <= n < 50
            assert store.stats()["embedded"] == n
        finally:
            store.close()

    asyncio.run(_run())


def test_run_until_idle_drains_everything(tmp_path):
    async def _run() -> None:
        backend = _StubEmbedder("text-m")
        store, backfill = _setup(tmp_path, {"text-m": backend}, pending=35)
        try:
            assert await backfill.run_until_idle(per_call_cap=10) == 35
            assert store.stats()["pending"] == 0
        finally:
            store.close()

    asyncio.run(_run())
