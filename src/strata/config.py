"""Strata configuration."""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, Field


def _default_data_dir() -> Path:
    return Path(os.environ.get("STRATA_DATA_DIR", Path(__file__).resolve().parents[2] / "data"))


class EmbeddingConfig(BaseModel):
    provider: str = Field(default_factory=lambda: os.environ.get("STRATA_EMBED_PROVIDER", "dashscope"))
    api_key: str = Field(default_factory=lambda: os.environ.get("DASHSCOPE_API_KEY", ""))
    base_url: str = "https://dashscope.aliyuncs.com/compatible-mode/v1"
    multimodal_url: str = (
        "https://dashscope.aliyuncs.com/api/v1/services/embeddings/"
        "multimodal-embedding/multimodal-embedding"
    )
    text_model: str = Field(
        default_factory=lambda: os.environ.get("STRATA_TEXT_EMBED_MODEL", "text-embedding-v3")
    )
    non_text_model: str = Field(
        default_factory=lambda: os.environ.get("STRATA_NON_TEXT_EMBED_MODEL", "qwen3-vl-embedding")
    )
    dims: int = 1024
    max_batch: int = 10
    timeout: float = 30.0


class SummarizerConfig(BaseModel):
    provider: str = Field(default_factory=lambda: os.environ.get("STRATA_SUMMARY_PROVIDER", "openai"))
    api_key: str = Field(
        default_factory=lambda: os.environ.get(
            "STRATA_SUMMARY_API_KEY", os.environ.get("DEEPSEEK_API_KEY", "")
        )
    )
    base_url: str = "https://api.deepseek.com"
    model: str = Field(default_factory=lambda: os.environ.get("STRATA_SUMMARY_MODEL", "deepseek-chat"))
    temperature: float = 0.3
    max_tokens: int = 1024
    timeout: float = 120.0


class ChunkingConfig(BaseModel):
    max_size: int = 500
    overlap: int = 50
    min_length: int = 10
    upload_max_size: int = 550
    upload_overlap: int = 70


class RetrievalConfig(BaseModel):
    default_top_k: int = 5
    per_layer_k: dict[str, int] = Field(
        default_factory=lambda: {"emotional": 2, "rational": 2, "historical": 3, "general": 3}
    )
    layer_weights: dict[str, float] = Field(
        default_factory=lambda: {"rational": 1.2, "emotional": 1.1, "historical": 1.0, "general": 0.9}
    )
    timeout: float = 10.0


class LayerConfig(BaseModel):
    emotional_cap: int = 10
    rational_min_turns: int = 4
    emotional_snippet_chars: int = 200
    rational_snippet_chars: int = 300
    update_timeout: float = 120.0
    auto_save_chat: bool = True


class BackfillConfig(BaseModel):
    per_call_cap: int = 50
    timeout: float = 300.0
    max_rounds: int = 20


class APIConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8431
    bearer_token: str = Field(default_factory=lambda: os.environ.get("STRATA_API_TOKEN", ""))


class Config(BaseModel):
    data_dir: Path = Field(default_factory=_default_data_dir)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    summarizer: SummarizerConfig = Field(default_factory=SummarizerConfig)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    layers: LayerConfig = Field(default_factory=LayerConfig)
    backfill: BackfillConfig = Field(default_factory=BackfillConfig)
    api: APIConfig = Field(default_factory=APIConfig)

    @property
    def db_path(self) -> Path:
        return self.data_dir / "db" / "strata.db"

    @property
    def export_dir(self) -> Path:
        return self.data_dir / "exports"

    def ensure_dirs(self) -> None:
        for d in [self.data_dir, self.db_path.parent, self.export_dir]:
            d.mkdir(parents=True, exist_ok=True)
