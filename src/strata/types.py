"""Core data types."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from strata.utils import utcnow


def _new_id() -> str:
    return uuid.uuid4().hex


class Layer(str, Enum):
    EMOTIONAL = "emotional"
    RATIONAL = "rational"
    HISTORICAL = "historical"
    GENERAL = "general"


class ChunkSource(str, Enum):
    CONVERSATION = "conversation"
    UPLOAD = "upload"
    IMPORT = "import"


class ContentKind(str, Enum):
    TEXT = "text"
    NON_TEXT = "non_text"


class Chunk(BaseModel):
    id: str = Field(default_factory=_new_id)
    source: ChunkSource = ChunkSource.CONVERSATION
    source_id: str = ""
    content: str
    embedding: list[float] | None = None
    embedding_model: str | None = None
    target_model: str | None = None
    layer: Layer = Layer.GENERAL
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_embedded(self) -> bool:
        return bool(self.embedding)


class RetrievalResult(BaseModel):
    id: str
    content: str
    score: float
    layer: Layer
    source: ChunkSource = ChunkSource.CONVERSATION
    source_id: str = ""
    embedding_model: str = ""


class Turn(BaseModel):
    """One conversation message handed in by the host application."""

    role: str
    content: str
    created_at: datetime = Field(default_factory=utcnow)
    conversation_id: str = ""


class EmbeddingItem(BaseModel):
    """Embedding input. Image payloads are http(s) or data: URLs."""

    kind: str = "text"  # text | image
    payload: str

    @classmethod
    def text(cls, value: str) -> "EmbeddingItem":
        return cls(kind="text", payload=value)

    @classmethod
    def image(cls, url: str) -> "EmbeddingItem":
        return cls(kind="image", payload=url)


def layer_of(value: Layer | str) -> Layer:
    return value if isinstance(value, Layer) else Layer(str(value).strip().lower())


def chunk_row(chunk: Chunk) -> dict[str, Any]:
    """Plain JSON-able view of a chunk (backup/export format)."""
    return {
        "id": chunk.id,
        "source": chunk.source.value,
        "source_id": chunk.source_id,
        "content": chunk.content,
        "embedding": chunk.embedding,
        "embedding_model": chunk.embedding_model,
        "target_model": chunk.target_model,
        "layer": chunk.layer.value,
        "created_at": chunk.created_at.isoformat(),
    }
