"""Strata exception hierarchy."""

from __future__ import annotations


class StrataError(Exception):
    """Base class for memory subsystem errors."""


class ConfigurationError(StrataError):
    """No model resolvable, missing credentials or an unknown provider.

    Retrying cannot help, so these surface to the caller instead of being
    turned into "not yet embedded" sentinels.
    """


class EmbeddingError(StrataError):
    """Embedding provider failed or answered with an unusable vector."""


class SummarizationError(StrataError):
    """Summarizer failed or returned nothing usable."""


class StoreError(StrataError):
    """Chunk store rejected an operation."""
