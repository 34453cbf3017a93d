"""Knowledge file ingestion."""

from strata.ingest.knowledge import KnowledgeExtraction, extract_knowledge

__all__ = ["KnowledgeExtraction", "extract_knowledge"]
