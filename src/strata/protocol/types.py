"""Versioned memory protocol contract for stable integrations."""

from __future__ import annotations

from typing import Any, Iterable, Protocol, runtime_checkable

from strata.types import ChunkSource, Layer, RetrievalResult, Turn


@runtime_checkable
class MemoryProtocolV1(Protocol):
    """Stable interface implemented by ``MemoryService`` and ``MemoryHttpClient``."""

    protocol_version: str

    async def ingest(
        self,
        text: str,
        source: ChunkSource | str = ChunkSource.IMPORT,
        source_id: str = "",
        layer: Layer | str = Layer.GENERAL,
    ) -> list[str]: ...

    async def search(self, query: str, top_k: int | None = None) -> list[RetrievalResult]: ...

    async def run_layer_update(self, layer: Layer | str, recent_turns: Iterable[Turn]) -> list[str]: ...

    async def run_backfill(self, per_call_cap: int | None = None) -> int: ...

    async def clear_layer(self, layer: Layer | str) -> int: ...

    async def clear_all(self) -> int: ...

    def status(self) -> dict[str, Any]: ...
