"""Embedding gateway: model resolution, batching and failure sentinels."""

from __future__ import annotations

from typing import Callable

import httpx
import numpy as np
from loguru import logger

from strata.config import EmbeddingConfig
from strata.embeddings.backends import EmbeddingBackend, create_embedder
from strata.exceptions import ConfigurationError, EmbeddingError
from strata.types import ContentKind, EmbeddingItem

# Provider faults that only cost the current batch.
_TRANSIENT = (httpx.HTTPError, EmbeddingError, ValueError, KeyError)


def empty_vector() -> np.ndarray:
    """Sentinel for "not yet embedded"."""
    return np.zeros((0,), dtype=np.float32)


class EmbeddingGateway:
    """Routes embedding requests to one backend per model.

    Vectors come back in input order. A failed sub-batch yields empty
    vectors for its positions and the remaining sub-batches still run.
    """

    def __init__(
        self,
        config: EmbeddingConfig | None = None,
        factory: Callable[[str], EmbeddingBackend] | None = None,
    ) -> None:
        self.config = config or EmbeddingConfig()
        self._factory = factory or (lambda model: create_embedder(self.config, model))
        self._backends: dict[str, EmbeddingBackend] = {}
        self._stats = {"requested": 0, "embedded": 0, "failed": 0}

    def resolve_model(self, kind: ContentKind | str = ContentKind.TEXT) -> str:
        kind = ContentKind(kind)
        text_model = (self.config.text_model or "").strip()
        if kind == ContentKind.NON_TEXT:
            model = (self.config.non_text_model or "").strip() or text_model
        else:
            model = text_model
        if not model:
            raise ConfigurationError(f"no embedding model configured for {kind.value} content")
        return model

    def backend(self, model: str) -> EmbeddingBackend:
        if not model:
            raise ConfigurationError("embedding model is required")
        if model not in self._backends:
            self._backends[model] = self._factory(model)
        return self._backends[model]

    def batch_size(self, model: str) -> int:
        return max(1, min(int(self.config.max_batch), int(self.backend(model).max_batch)))

    async def embed(self, items: list[EmbeddingItem], model: str) -> list[np.ndarray]:
        backend = self.backend(model)
        out = [empty_vector() for _ in items]
        eligible = [
            (i, item) for i, item in enumerate(items)
            if item.payload.strip() and (item.kind == "text" or backend.supports_images)
        ]
        batch_size = self.batch_size(model)
        self._stats["requested"] += len(items)

        for start in range(0, len(eligible), batch_size):
            batch = eligible[start:start + batch_size]
            try:
                vectors = await self._embed_batch(backend, [item for _, item in batch])
            except ConfigurationError:
                raise
            except _TRANSIENT as exc:
                logger.warning(
                    f"Embedding batch of {len(batch)} failed on {model}: {exc}"
                )
                self._stats["failed"] += len(batch)
                continue
            for (i, _), vec in zip(batch, vectors):
                if vec.size and bool(np.all(np.isfinite(vec))):
                    out[i] = vec
                    self._stats["embedded"] += 1
                else:
                    self._stats["failed"] += 1
        return out

    async def embed_texts(self, texts: list[str], model: str) -> list[np.ndarray]:
        return await self.embed([EmbeddingItem.text(t) for t in texts], model)

    async def embed_query(self, text: str, model: str) -> np.ndarray:
        vec = (await self.embed([EmbeddingItem.text(text)], model))[0]
        if vec.size == 0:
            raise EmbeddingError(f"could not embed query with {model}")
        return vec

    @staticmethod
    async def _embed_batch(backend: EmbeddingBackend, items: list[EmbeddingItem]) -> np.ndarray:
        if backend.supports_images:
            arr = await backend.embed_items(items)  # type: ignore[attr-defined]
        else:
            arr = await backend.embed([item.payload.strip() for item in items])
        arr = np.asarray(arr, dtype=np.float32)
        if arr.ndim != 2 or arr.shape[0] != len(items) or arr.shape[1] == 0:
            raise EmbeddingError(f"malformed embedding batch: shape {arr.shape} for {len(items)} items")
        return arr

    @property
    def stats(self) -> dict[str, int]:
        return dict(self._stats)

    async def close(self) -> None:
        for backend in self._backends.values():
            await backend.close()
        self._backends.clear()
