"""Per-layer mutation policies.

emotional   rolling window of affect snapshots, trimmed to ``emotional_cap``
rational    one synthesized user profile, swapped atomically on each update
historical  append-only transcript chunks
general     append-only knowledge and auto-saved chat, cleared only on request
"""

from __future__ import annotations

import asyncio
import contextlib

import httpx
from loguru import logger

from strata.chunking import chunk
from strata.config import ChunkingConfig, LayerConfig
from strata.embeddings.gateway import EmbeddingGateway
from strata.exceptions import ConfigurationError, SummarizationError
from strata.layers import prompts
from strata.llm.backends import ChatBackend, Message
from strata.storage.sqlite_store import SQLiteStore
from strata.types import Chunk, ChunkSource, ContentKind, Layer, Turn
from strata.utils import format_timestamp, utcnow

EMOTIONAL_SOURCE_ID = "emotional_analysis"
PROFILE_SOURCE_ID = "user_profile"


class LayerManager:
    def __init__(
        self,
        store: SQLiteStore,
        gateway: EmbeddingGateway,
        chat: ChatBackend | None = None,
        config: LayerConfig | None = None,
        chunking: ChunkingConfig | None = None,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.chat = chat
        self.config = config or LayerConfig()
        self.chunking = chunking or ChunkingConfig()
        self._locks = {layer: asyncio.Lock() for layer in Layer}
        self._turns_since_profile = 0

    async def run_update(self, layer: Layer, turns: list[Turn]) -> list[str]:
        """Apply ``layer``'s policy to a window of recent turns; returns new chunk ids."""
        turns = [t for t in turns if t.content.strip()]
        if not turns:
            return []
        if layer == Layer.EMOTIONAL:
            return await self.update_emotional(turns)
        if layer == Layer.RATIONAL:
            return await self.update_rational(turns)
        if layer == Layer.HISTORICAL:
            return await self.append_historical(turns)
        return await self.append_chat(turns)

    def note_turns(self, count: int) -> bool:
        """Count new turns; True once enough have built up for a profile refresh."""
        self._turns_since_profile += max(0, int(count))
        return self._turns_since_profile >= self.config.rational_min_turns

    # --- Emotional ---

    async def update_emotional(self, turns: list[Turn]) -> list[str]:
        model = self._text_model(Layer.EMOTIONAL)
        if model is None:
            return []
        snapshot = await self.summarize(
            prompts.emotional_messages(turns, self.config.emotional_snippet_chars),
            max_tokens=500,
            layer=Layer.EMOTIONAL,
        )
        if not snapshot:
            return []
        new = Chunk(
            source=ChunkSource.CONVERSATION,
            source_id=EMOTIONAL_SOURCE_ID,
            content=f"[Emotional snapshot {format_timestamp(utcnow())}] {snapshot}",
            layer=Layer.EMOTIONAL,
            target_model=model,
        )
        await self.write(Layer.EMOTIONAL, [new])
        await self.embed_chunks([new])
        return [new.id]

    # --- Rational ---

    async def update_rational(self, turns: list[Turn]) -> list[str]:
        model = self._text_model(Layer.RATIONAL)
        if model is None:
            return []
        async with self._locks[Layer.RATIONAL]:
            existing = self.store.list_layer(Layer.RATIONAL)
            profile = "\n".join(c.content.removeprefix(prompts.PROFILE_PREFIX) for c in existing)
            updated = await self.summarize(
                prompts.rational_messages(profile, turns, self.config.rational_snippet_chars),
                max_tokens=1000,
                layer=Layer.RATIONAL,
            )
            if not updated:
                return []
            pieces = chunk(
                updated,
                self.chunking.max_size,
                self.chunking.overlap,
                min_length=self.chunking.min_length,
            )
            if not pieces:
                logger.warning("Profile summary too short to store; keeping previous profile")
                return []
            created = utcnow()
            new = [
                Chunk(
                    source=ChunkSource.CONVERSATION,
                    source_id=PROFILE_SOURCE_ID,
                    content=f"{prompts.PROFILE_PREFIX}{piece.strip()}",
                    layer=Layer.RATIONAL,
                    target_model=model,
                    created_at=created,
                )
                for piece in pieces
            ]
            self._apply_policy(Layer.RATIONAL, new)
            self._turns_since_profile = 0
        await self.embed_chunks(new)
        return [c.id for c in new]

    # --- Append-only layers ---

    async def append_historical(self, turns: list[Turn]) -> list[str]:
        return await self._append_transcript(turns, Layer.HISTORICAL)

    async def append_chat(self, turns: list[Turn]) -> list[str]:
        return await self._append_transcript(turns, Layer.GENERAL)

    async def _append_transcript(self, turns: list[Turn], layer: Layer) -> list[str]:
        model = self._text_model(layer)
        if model is None:
            return []
        text = prompts.format_transcript(turns)
        source_id = next((t.conversation_id for t in turns if t.conversation_id), "")
        if not source_id:
            source_id = f"conversation:{format_timestamp(turns[0].created_at)}"
        pieces = chunk(
            text,
            self.chunking.max_size,
            self.chunking.overlap,
            min_length=self.chunking.min_length,
        )
        new = [
            Chunk(
                source=ChunkSource.CONVERSATION,
                source_id=source_id,
                content=piece,
                layer=layer,
                target_model=model,
            )
            for piece in pieces
        ]
        await self.write(layer, new)
        await self.embed_chunks(new)
        return [c.id for c in new]

    async def write(self, layer: Layer, chunks: list[Chunk]) -> list[str]:
        """Store chunks under ``layer``'s policy, serialized per layer."""
        if not chunks:
            return []
        async with self._locks[layer]:
            self._apply_policy(layer, chunks)
        return [c.id for c in chunks]

    def _apply_policy(self, layer: Layer, chunks: list[Chunk]) -> int:
        """Caller holds the layer lock. Returns the number of chunks evicted."""
        if layer == Layer.RATIONAL:
            return self.store.replace_layer(layer, chunks)
        self.store.insert_chunks(chunks)
        if layer == Layer.EMOTIONAL:
            removed = self.store.trim_layer(layer, self.config.emotional_cap)
            if removed:
                logger.debug(f"Emotional layer trimmed {removed} old snapshots")
            return removed
        return 0

    async def clear(self, layer: Layer) -> int:
        async with self._locks[layer]:
            removed = self.store.delete_layer(layer)
        if layer == Layer.RATIONAL:
            self._turns_since_profile = 0
        logger.info(f"Cleared {removed} chunks from {layer.value} layer")
        return removed

    async def clear_all(self) -> int:
        async with contextlib.AsyncExitStack() as stack:
            for layer in Layer:
                await stack.enter_async_context(self._locks[layer])
            removed = self.store.delete_all()
        self._turns_since_profile = 0
        logger.info(f"Cleared all {removed} chunks")
        return removed

    # --- Collaborators ---

    async def summarize(self, messages: list[Message], max_tokens: int, layer: Layer) -> str | None:
        """Run the summarizer; failures are logged and yield None."""
        if self.chat is None:
            logger.warning(f"No summarizer configured; skipping {layer.value} update")
            return None
        try:
            resp = await self.chat.chat(messages, max_tokens=max_tokens)
            text = (resp.content or "").strip()
            if not text:
                raise SummarizationError("summarizer returned empty text")
            return text
        except (ConfigurationError, SummarizationError, httpx.HTTPError, KeyError, IndexError, ValueError) as exc:
            logger.warning(f"{layer.value} summarization failed, skipping cycle: {exc}")
            return None

    async def embed_chunks(self, chunks: list[Chunk], strict: bool = False) -> int:
        """Embed freshly written chunks; anything that fails stays pending for backfill.

        With ``strict`` a configuration error is raised instead of logged.
        """
        groups: dict[str, list[Chunk]] = {}
        for c in chunks:
            if c.target_model:
                groups.setdefault(c.target_model, []).append(c)
        written = 0
        for model, group in groups.items():
            try:
                vectors = await self.gateway.embed_texts([c.content for c in group], model)
            except ConfigurationError as exc:
                if strict:
                    raise
                logger.warning(f"Embedding {len(group)} chunks with {model} deferred to backfill: {exc}")
                continue
            for c, vec in zip(group, vectors):
                if vec.size and self.store.update_embedding(c.id, vec, model):
                    written += 1
        return written

    def _text_model(self, layer: Layer) -> str | None:
        try:
            return self.gateway.resolve_model(ContentKind.TEXT)
        except ConfigurationError as exc:
            logger.warning(f"Skipping {layer.value} update: {exc}")
            return None
