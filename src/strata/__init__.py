"""Strata: layered retrieval-augmented memory for personal assistants."""

__version__ = "0.1.0"

from strata.protocol import MemoryHttpClient, MemoryProtocolV1

__all__ = [
    "__version__",
    "MemoryHttpClient",
    "MemoryProtocolV1",
]
