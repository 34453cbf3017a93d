"""Backfill embeddings for chunks stored without a vector."""

from __future__ import annotations

import asyncio

from loguru import logger

from strata.config import BackfillConfig
from strata.embeddings.gateway import EmbeddingGateway
from strata.storage.sqlite_store import SQLiteStore
from strata.types import Chunk, ContentKind


class BackfillProcessor:
    """Embeds pending chunks, oldest first, in bounded calls.

    Each call handles at most ``per_call_cap`` chunks and writes vectors back
    per provider sub-batch, so a timeout or a failed batch keeps the progress
    already made. Chunks that fail stay pending for the next call.
    """

    def __init__(self, store: SQLiteStore, gateway: EmbeddingGateway,
                 config: BackfillConfig | None = None) -> None:
        self.store = store
        self.gateway = gateway
        self.config = config or BackfillConfig()

    async def run(self, per_call_cap: int | None = None, timeout: float | None = None) -> int:
        cap = self.config.per_call_cap if per_call_cap is None else int(per_call_cap)
        progress = [0]
        try:
            if timeout:
                await asyncio.wait_for(self._run(cap, progress), timeout)
            else:
                await self._run(cap, progress)
        except asyncio.TimeoutError:
            logger.warning(f"Backfill timed out after {timeout}s with {progress[0]} chunks embedded")
        return progress[0]

    async def run_until_idle(self, per_call_cap: int | None = None,
                             max_rounds: int | None = None,
                             timeout: float | None = None) -> int:
        rounds = self.config.max_rounds if max_rounds is None else int(max_rounds)
        total = 0
        for _ in range(max(1, rounds)):
            n = await self.run(per_call_cap, timeout=timeout)
            total += n
            if n == 0:
                break
        return total

    async def _run(self, cap: int, progress: list[int]) -> None:
        pending = self.store.list_unembedded(cap)
        if not pending:
            return
        groups = self._group_by_model(pending)
        for model, chunks in groups.items():
            size = self.gateway.batch_size(model)
            for start in range(0, len(chunks), size):
                batch = chunks[start:start + size]
                vectors = await self.gateway.embed_texts([c.content for c in batch], model)
                for chunk, vec in zip(batch, vectors):
                    if vec.size and self.store.update_embedding(chunk.id, vec, model):
                        progress[0] += 1
        logger.debug(f"Backfill embedded {progress[0]}/{len(pending)} pending chunks")

    def _group_by_model(self, chunks: list[Chunk]) -> dict[str, list[Chunk]]:
        groups: dict[str, list[Chunk]] = {}
        default_model = ""
        for chunk in chunks:
            model = chunk.target_model
            if not model:
                if not default_model:
                    default_model = self.gateway.resolve_model(ContentKind.TEXT)
                model = default_model
            groups.setdefault(model, []).append(chunk)
        return groups
