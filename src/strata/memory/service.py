"""Memory service: the one object that owns the chunk store and its collaborators."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Callable, Iterable

from loguru import logger

from strata.backfill import BackfillProcessor
from strata.chunking import chunk, looks_like_markdown
from strata.config import Config
from strata.embeddings.backends import EmbeddingBackend
from strata.embeddings.gateway import EmbeddingGateway
from strata.ingest.knowledge import extract_knowledge
from strata.layers.manager import LayerManager
from strata.layers.queue import LayerUpdateQueue
from strata.llm import ChatBackend, create_chat_backend
from strata.retrieval.context import build_memory_context
from strata.retrieval.layered import LayeredRetriever
from strata.storage.sqlite_store import SQLiteStore
from strata.types import Chunk, ChunkSource, ContentKind, Layer, RetrievalResult, Turn, layer_of


class MemoryService:
    """Layered RAG memory.

    Foreground calls (``ingest``, ``search``) raise configuration errors to
    the caller. Layer updates submitted through ``post_conversation_update``
    run in the background and only ever log their failures.
    """

    protocol_version = "v1"

    def __init__(
        self,
        config: Config | None = None,
        chat: ChatBackend | None = None,
        embedder_factory: Callable[[str], EmbeddingBackend] | None = None,
    ) -> None:
        self.config = config or Config()
        self.config.ensure_dirs()

        self.store = SQLiteStore(self.config.db_path)
        self.gateway = EmbeddingGateway(self.config.embedding, factory=embedder_factory)
        self.chat = chat if chat is not None else create_chat_backend(self.config.summarizer)
        self.layers = LayerManager(
            self.store,
            self.gateway,
            self.chat,
            config=self.config.layers,
            chunking=self.config.chunking,
        )
        self.retriever = LayeredRetriever(self.store, self.gateway, self.config.retrieval)
        self.backfill = BackfillProcessor(self.store, self.gateway, self.config.backfill)
        self.updates = LayerUpdateQueue(self.layers.run_update, timeout=self.config.layers.update_timeout)

    # --- Ingest ---

    async def ingest(
        self,
        text: str,
        source: ChunkSource | str = ChunkSource.IMPORT,
        source_id: str = "",
        layer: Layer | str = Layer.GENERAL,
        structured: bool | None = None,
    ) -> list[str]:
        """Chunk, store and embed text. Returns chunk IDs.

        Chunks whose embedding fails transiently stay pending for backfill.
        """
        layer = layer_of(layer)
        source = ChunkSource(source)
        model = self.gateway.resolve_model(ContentKind.TEXT)
        if structured is None:
            structured = looks_like_markdown(source_id)
        cfg = self.config.chunking
        max_size, overlap = cfg.max_size, cfg.overlap
        if source == ChunkSource.UPLOAD and not structured:
            max_size, overlap = cfg.upload_max_size, cfg.upload_overlap
        pieces = chunk(text, max_size, overlap, structured=structured, min_length=cfg.min_length)
        if not pieces:
            return []
        new = [
            Chunk(source=source, source_id=source_id, content=p, layer=layer, target_model=model)
            for p in pieces
        ]
        await self.layers.write(layer, new)
        embedded = await self.layers.embed_chunks(new, strict=True)
        logger.debug(f"Ingested {len(new)} chunks into {layer.value} ({embedded} embedded)")
        return [c.id for c in new]

    async def ingest_file(
        self,
        path: Path | str,
        layer: Layer | str = Layer.GENERAL,
        source: ChunkSource | str = ChunkSource.UPLOAD,
    ) -> list[str]:
        """Ingest a knowledge file (text, markdown, PDF or image)."""
        path = Path(path)
        layer = layer_of(layer)
        source = ChunkSource(source)
        extraction = await asyncio.to_thread(extract_knowledge, path)
        for warning in extraction.warnings:
            logger.warning(warning)

        if extraction.kind != ContentKind.NON_TEXT or not extraction.embedding_inputs:
            return await self.ingest(
                extraction.text, source, path.name, layer, structured=extraction.structured,
            )

        model = self.gateway.resolve_model(ContentKind.NON_TEXT)
        inputs = extraction.embedding_inputs
        n = len(inputs)
        new = [
            Chunk(
                source=source,
                source_id=path.name,
                content=extraction.text if n == 1 else f"{extraction.text}\n\n[Part {i}/{n}]",
                layer=layer,
                target_model=model,
            )
            for i in range(1, n + 1)
        ]
        await self.layers.write(layer, new)
        vectors = await self.gateway.embed(inputs, model)
        embedded = 0
        for c, vec in zip(new, vectors):
            if vec.size and self.store.update_embedding(c.id, vec, model):
                embedded += 1
        logger.debug(f"Ingested {path.name} as {n} {model} chunks ({embedded} embedded)")
        return [c.id for c in new]

    # --- Retrieval ---

    async def search(
        self,
        query: str,
        top_k: int | None = None,
        timeout: float | None = None,
    ) -> list[RetrievalResult]:
        return await self.retriever.search(query, top_k=top_k, timeout=timeout)

    async def recall_context(self, query: str, top_k: int | None = None) -> str:
        """Memory context for prompt assembly; any failure yields an empty context."""
        try:
            results = await self.search(query, top_k=top_k)
        except Exception as exc:
            logger.warning(f"Memory recall failed, continuing without context: {exc}")
            return ""
        return build_memory_context(results)

    # --- Layers ---

    async def run_layer_update(self, layer: Layer | str, recent_turns: Iterable[Turn]) -> list[str]:
        return await self.layers.run_update(layer_of(layer), list(recent_turns))

    def post_conversation_update(self, turns: Iterable[Turn]) -> list[Layer]:
        """Queue background layer updates after a reply; never waits on them."""
        turns = [t for t in turns if t.content.strip()]
        if not turns:
            return []
        submitted = [Layer.EMOTIONAL, Layer.HISTORICAL]
        if self.layers.note_turns(len(turns)):
            submitted.append(Layer.RATIONAL)
        if self.config.layers.auto_save_chat:
            submitted.append(Layer.GENERAL)
        for layer in submitted:
            self.updates.submit(layer, turns)
        return submitted

    async def save_chat(self, turns: Iterable[Turn]) -> list[str]:
        return await self.layers.append_chat(list(turns))

    async def wait_for_updates(self) -> None:
        await self.updates.drain()

    async def clear_layer(self, layer: Layer | str) -> int:
        return await self.layers.clear(layer_of(layer))

    async def clear_all(self) -> int:
        return await self.layers.clear_all()

    # --- Backfill ---

    async def run_backfill(self, per_call_cap: int | None = None) -> int:
        return await self.backfill.run(per_call_cap, timeout=self.config.backfill.timeout)

    # --- Status / backup ---

    def status(self) -> dict[str, Any]:
        st = self.store.stats()
        st["models"] = {
            "text": self.config.embedding.text_model,
            "non_text": self.config.embedding.non_text_model,
        }
        st["embedding"] = self.gateway.stats
        st["updates"] = self.updates.stats
        return st

    def export_chunks(self) -> list[dict[str, Any]]:
        return self.store.export_chunks()

    def import_chunks(self, rows: Iterable[dict[str, Any]]) -> int:
        return self.store.import_chunks(rows)

    async def close(self, drain: bool = True) -> None:
        if drain:
            await self.updates.drain()
        await self.updates.close()
        await self.gateway.close()
        if self.chat is not None:
            await self.chat.close()
        self.store.close()
