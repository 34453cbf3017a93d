"""Layered retrieval: per-layer, per-model cosine search with weighted merge."""

from __future__ import annotations

import asyncio
from typing import Iterable

import numpy as np
from loguru import logger

from strata.config import RetrievalConfig
from strata.embeddings.gateway import EmbeddingGateway
from strata.exceptions import EmbeddingError
from strata.retrieval.similarity import find_top_k
from strata.storage.sqlite_store import SQLiteStore
from strata.types import Chunk, Layer, RetrievalResult


class LayeredRetriever:
    """Searches each memory layer independently and merges the results.

    Vectors are only compared within one embedding model. The query is
    embedded once per model present in the store, shared by every layer.
    """

    def __init__(self, store: SQLiteStore, gateway: EmbeddingGateway,
                 config: RetrievalConfig | None = None) -> None:
        self.store = store
        self.gateway = gateway
        self.config = config or RetrievalConfig()

    async def search(
        self,
        query: str,
        top_k: int | None = None,
        per_layer_k: dict[str, int] | None = None,
        layer_weights: dict[str, float] | None = None,
        timeout: float | None = None,
        layers: Iterable[Layer] | None = None,
    ) -> list[RetrievalResult]:
        query = (query or "").strip()
        top_k = self.config.default_top_k if top_k is None else int(top_k)
        if not query or top_k <= 0:
            return []
        per_layer_k = {**self.config.per_layer_k, **(per_layer_k or {})}
        weights = {**self.config.layer_weights, **(layer_weights or {})}
        timeout = self.config.timeout if timeout is None else timeout

        query_tasks: dict[str, asyncio.Task] = {}

        async def query_vector(model: str) -> np.ndarray:
            task = query_tasks.get(model)
            if task is None:
                task = asyncio.ensure_future(self.gateway.embed_query(query, model))
                query_tasks[model] = task
            return await asyncio.shield(task)

        layer_tasks: dict[Layer, asyncio.Task] = {}
        for layer in (layers or list(Layer)):
            k = int(per_layer_k.get(layer.value, 0))
            if k > 0:
                layer_tasks[layer] = asyncio.ensure_future(self._search_layer(layer, k, query_vector))
        if not layer_tasks:
            return []

        try:
            done, pending = await asyncio.wait(layer_tasks.values(), timeout=timeout)
            if pending:
                logger.warning(
                    f"Retrieval timed out after {timeout}s; "
                    f"returning {len(done)}/{len(layer_tasks)} layers"
                )
            scored: list[RetrievalResult] = []
            for layer, task in layer_tasks.items():
                if task not in done:
                    continue
                weight = float(weights.get(layer.value, 1.0))
                for chunk, score in task.result():
                    scored.append(self._to_result(chunk, score * weight))
        finally:
            leftovers = [t for t in [*layer_tasks.values(), *query_tasks.values()] if not t.done()]
            for t in leftovers:
                t.cancel()
            if leftovers:
                await asyncio.gather(*leftovers, return_exceptions=True)
            for t in query_tasks.values():
                if t.done() and not t.cancelled():
                    t.exception()  # retrieved so asyncio does not warn

        scored.sort(key=lambda r: r.score, reverse=True)
        out: list[RetrievalResult] = []
        seen: set[str] = set()
        for r in scored:
            if r.id in seen:
                continue
            seen.add(r.id)
            out.append(r)
            if len(out) >= top_k:
                break
        return out

    async def _search_layer(self, layer: Layer, k: int, query_vector) -> list[tuple[Chunk, float]]:
        hits: list[tuple[Chunk, float]] = []
        for model in self.store.embedding_models(layer):
            try:
                qvec = await query_vector(model)
            except EmbeddingError as exc:
                logger.warning(f"Skipping {layer.value}/{model}: {exc}")
                continue
            chunks = [
                c for c in self.store.list_embedded(layer, model)
                if c.embedding and len(c.embedding) == qvec.size
            ]
            if not chunks:
                continue
            matrix = np.asarray([c.embedding for c in chunks], dtype=np.float32)
            for idx, score in find_top_k(qvec, matrix, k):
                hits.append((chunks[idx], score))
        return hits

    @staticmethod
    def _to_result(chunk: Chunk, score: float) -> RetrievalResult:
        return RetrievalResult(
            id=chunk.id,
            content=chunk.content,
            score=float(score),
            layer=chunk.layer,
            source=chunk.source,
            source_id=chunk.source_id,
            embedding_model=chunk.embedding_model or "",
        )
