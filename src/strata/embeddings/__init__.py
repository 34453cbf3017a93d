"""Embedding providers and the model-aware gateway."""

from strata.embeddings.backends import (
    DashScopeEmbedder,
    DashScopeMultimodalEmbedder,
    EmbeddingBackend,
    HashEmbedder,
    OllamaEmbedder,
    OpenAIEmbedder,
    create_embedder,
    is_multimodal_model,
)
from strata.embeddings.gateway import EmbeddingGateway, empty_vector

__all__ = [
    "EmbeddingBackend",
    "EmbeddingGateway",
    "DashScopeEmbedder",
    "DashScopeMultimodalEmbedder",
    "OpenAIEmbedder",
    "OllamaEmbedder",
    "HashEmbedder",
    "create_embedder",
    "empty_vector",
    "is_multimodal_model",
]
