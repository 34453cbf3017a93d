"""Vector retrieval across memory layers."""

from strata.retrieval.context import build_memory_context
from strata.retrieval.layered import LayeredRetriever
from strata.retrieval.similarity import cosine_similarity, find_top_k

__all__ = ["LayeredRetriever", "build_memory_context", "cosine_similarity", "find_top_k"]
